from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from kalshibot.adapters.cex import AssetReference, scan_references
from kalshibot.adapters.kalshi.client import ExchangeClient, FakeExchange, build_exchange
from kalshibot.adapters.kalshi.schemas import parse_markets
from kalshibot.config import Config
from kalshibot.core.errors import ConfigError, ExchangeInactive, KalshiBotError, RunAborted, SlackError
from kalshibot.core.models import Market
from kalshibot.exec.engine import ExecutionEngine, Mode
from kalshibot.ingestion.discovery import collect_candidates
from kalshibot.notify.slack import post_run_log
from kalshibot.observability.metrics import inc
from kalshibot.observability.report import render_console, render_slack
from kalshibot.service.runner import RunSummary, run


logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    mode: Mode
    summary: Optional[RunSummary] = None
    error: Optional[str] = None
    report: str = ""
    cex_refs: Dict[str, AssetReference] = field(default_factory=dict)
    slack_posted: bool = False

    @property
    def exit_code(self) -> int:
        return 0 if self.error is None else 1


def load_markets_file(path: str | Path) -> List[Market]:
    """Read a JSON list of market records (or a `{"markets": [...]}` page) for offline runs."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"failed to read markets file {p}: {e}") from e
    if isinstance(data, dict):
        data = data.get("markets") or []
    if not isinstance(data, list):
        raise ConfigError(f"markets file {p} must hold a list of markets")
    return parse_markets(data)


def _check_exchange(exchange: ExchangeClient) -> None:
    status = exchange.exchange_status()
    if status is None:
        return
    if not status.exchange_active or not status.trading_active:
        resume = status.exchange_estimated_resume_time
        msg = f"exchange inactive (exchange_active={status.exchange_active} trading_active={status.trading_active})"
        if resume is not None:
            msg += f", estimated resume {resume.isoformat()}"
        raise ExchangeInactive(msg)


def _make_exchange(cfg: Config, markets: Optional[List[Market]]) -> ExchangeClient:
    """Dry runs over supplied markets never touch the network; everything else uses build_exchange."""
    if markets is not None and cfg.dry_run:
        return FakeExchange(markets=markets)
    return build_exchange(
        base_url=cfg.kalshi_base_url,
        api_key=cfg.kalshi_api_key,
        private_key_pem=cfg.kalshi_private_key_pem or None,
        private_key_path=cfg.kalshi_private_key_path or None,
        timeout_s=cfg.kalshi_timeout_s,
        markets=markets,
    )


def run_once(
    cfg: Config,
    exchange: Optional[ExchangeClient] = None,
    slack_client: Optional[httpx.Client] = None,
    cex_client: Optional[httpx.Client] = None,
    markets: Optional[List[Market]] = None,
    run_id: Optional[str] = None,
) -> RunResult:
    """One full scan: discover, evaluate, execute, report.

    Never raises for run-level failures; the error lands in RunResult.error and
    the report is still rendered and posted.

    When `markets` is given it replaces exchange discovery; in live mode the
    exchange is then used only for the status check and order submission.
    """
    mode = Mode.DRY_RUN if cfg.dry_run else Mode.LIVE
    result = RunResult(mode=mode)
    logger.info("Starting run (%s)", mode)
    owned: Optional[ExchangeClient] = None
    try:
        policy = cfg.policy()
        if exchange is None:
            if mode is Mode.LIVE and not cfg.has_credentials:
                raise ConfigError("live mode requires KALSHI_API_KEY and KALSHI_PRIVATE_KEY_PEM or KALSHI_PRIVATE_KEY_PATH")
            exchange = owned = _make_exchange(cfg, markets)
        if mode is Mode.LIVE and cfg.check_exchange:
            _check_exchange(exchange)
        if cfg.cex_enable:
            result.cex_refs = scan_references(cfg.cex_min_sources, client=cex_client)
        if markets is not None:
            logger.info("Scanning %d supplied markets instead of exchange discovery.", len(markets))
            raw = list(markets)
        else:
            raw = exchange.list_markets(cfg.discovery_settings())
        candidates = collect_candidates(raw, cfg.market_filter(), exchange.now())
        engine = ExecutionEngine(exchange, mode)
        result.summary = run(candidates, policy, engine, run_id=run_id, log_decisions=cfg.log_decisions)
    except RunAborted as e:
        result.summary = e.summary
        result.error = str(e)
    except KalshiBotError as e:
        logger.error("run failed: %s", e)
        inc("runs_failed", 1)
        result.error = str(e)
    finally:
        if owned is not None:
            owned.close()

    if result.summary is not None:
        result.report = render_console(result.summary, result.cex_refs)
    else:
        result.report = f"mode: {mode}\nresult: ERROR {result.error}"

    if cfg.slack_webhook_url:
        header = render_slack(result.summary, str(mode), error=result.error)
        try:
            result.slack_posted = post_run_log(cfg.slack_webhook_url, header, log=result.report, client=slack_client)
        except SlackError as e:
            logger.warning("slack post failed: %s", e)
    return result
