from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from kalshibot.adapters.kalshi.signing import load_private_key
from kalshibot.config import Config, resolve_config, validate_config
from kalshibot.core.errors import ConfigError
from kalshibot.core.models import Quote
from kalshibot.core.pricing import format_price, parse_price
from kalshibot.exec.planning import plan
from kalshibot.observability.logging import setup_logging
from kalshibot.observability.prometheus import write_textfile
from kalshibot.service.app import load_markets_file, run_once
from kalshibot.strategy.qualify import evaluate


DEFAULT_CONFIG_PATHS = ["kalshibot.toml"]


def _paths(config_paths: Optional[Sequence[str]]) -> List[str]:
    return list(config_paths) if config_paths else list(DEFAULT_CONFIG_PATHS)


def cmd_run(
    config_paths: Optional[Sequence[str]] = None,
    live: Optional[bool] = None,
    markets_file: Optional[str] = None,
    as_json: bool = False,
    metrics_file: Optional[str] = None,
) -> Tuple[str, int]:
    """Run one scan and print the report. Returns (output, exit code)."""
    try:
        cfg = resolve_config(_paths(config_paths))
    except ConfigError as e:
        out = f"INVALID: {e}"
        print(out)
        return out, 1
    if live is not None:
        cfg = replace(cfg, dry_run=not live)
    setup_logging(cfg.logging_level, cfg.logging_json)
    markets = None
    if markets_file:
        try:
            markets = load_markets_file(markets_file)
        except ConfigError as e:
            out = f"INVALID: {e}"
            print(out)
            return out, 1
    result = run_once(cfg, markets=markets)
    if metrics_file:
        write_textfile(metrics_file)
    if as_json:
        payload = {
            "mode": result.mode.value,
            "exit_code": result.exit_code,
            "error": result.error,
            "summary": result.summary.to_dict() if result.summary is not None else None,
            "cex": {k: ref.reference_price for k, ref in result.cex_refs.items()},
        }
        out = json.dumps(payload, indent=2)
    else:
        out = result.report
    print(out)
    return out, result.exit_code


def cmd_evaluate(
    yes_ask: str,
    no_ask: str,
    seconds_to_close: int,
    config_paths: Optional[Sequence[str]] = None,
    ticker: str = "MANUAL",
) -> str:
    """Evaluate a single hand-entered quote against the configured policy."""
    try:
        cfg = resolve_config(_paths(config_paths))
        policy = cfg.policy()
    except ConfigError as e:
        out = f"INVALID: {e}"
        print(out)
        return out
    now = datetime.now(timezone.utc)
    quote = Quote(
        ticker=ticker,
        title=ticker,
        close_time=now + timedelta(seconds=seconds_to_close),
        yes_ask=parse_price(yes_ask),
        no_ask=parse_price(no_ask),
        seconds_to_close=seconds_to_close,
    )
    verdict = evaluate(quote, policy)
    lines = [
        f"{ticker}: yes={format_price(quote.yes_ask)} no={format_price(quote.no_ask)} ttl={seconds_to_close}s",
        verdict.label,
    ]
    if verdict.qualified:
        for intent in plan(quote, verdict, policy):
            lines.append(
                f"  buy {intent.side.value.upper()} x{intent.count} @ {format_price(intent.limit_price)} "
                f"{intent.time_in_force.value} id={intent.client_order_id}"
            )
    out = "\n".join(lines)
    print(out)
    return out


def _credential_issues(cfg: Config) -> List[str]:
    issues: List[str] = []
    if not cfg.kalshi_api_key:
        issues.append("KALSHI_API_KEY is not set")
    if not (cfg.kalshi_private_key_pem or cfg.kalshi_private_key_path):
        issues.append("no private key (KALSHI_PRIVATE_KEY_PEM or KALSHI_PRIVATE_KEY_PATH)")
        return issues
    try:
        load_private_key(pem=cfg.kalshi_private_key_pem or None, path=cfg.kalshi_private_key_path or None)
    except ConfigError as e:
        issues.append(str(e))
    return issues


def cmd_preflight(config_paths: Optional[Sequence[str]] = None, as_json: bool = False) -> str:
    """Validate config, policy and credentials before a live run.

    Checks:
    - TOML parse success and value types
    - policy invariants
    - discovery mode and limits
    - when live, API key present and private key loadable as RSA
    """
    issues: List[str] = []
    warnings: List[str] = []
    cfg: Optional[Config] = None
    try:
        cfg = resolve_config(_paths(config_paths))
    except ConfigError as e:
        issues.append(str(e))
    if cfg is not None:
        warnings = validate_config(cfg)
        if not cfg.dry_run:
            issues.extend(_credential_issues(cfg))
            warnings = [w for w in warnings if not w.startswith("live mode requires")]
    if as_json:
        out = json.dumps({"ok": not issues, "issues": issues, "warnings": warnings})
        print(out)
        return out
    if issues:
        lines = ["INVALID: preflight checks failed"] + [f" - {i}" for i in issues]
        out = "\n".join(lines)
        print(out)
        return out
    mode = "DRY_RUN" if cfg is not None and cfg.dry_run else "LIVE"
    lines = [f"OK: preflight passed ({mode})"] + [f" ! {w}" for w in warnings]
    out = "\n".join(lines)
    print(out)
    return out


def cmd_config_dump(config_paths: Optional[Sequence[str]] = None) -> str:
    try:
        cfg = resolve_config(_paths(config_paths))
    except ConfigError as e:
        out = f"INVALID: {e}"
        print(out)
        return out
    out = json.dumps(cfg.redacted(), indent=2, sort_keys=True)
    print(out)
    return out
