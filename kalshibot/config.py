from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import tomllib

from kalshibot.adapters.kalshi.client import DEFAULT_BASE_URL
from kalshibot.core.errors import ConfigError, PolicyError
from kalshibot.core.pricing import to_decimal
from kalshibot.ingestion.discovery import (
    DEFAULT_15M_SERIES,
    DEFAULT_INTERVAL_REGEX,
    DISCOVERY_MODES,
    DiscoverySettings,
    MarketFilter,
)
from kalshibot.strategy.qualify import Policy, PriceBand, TimeInForce


@dataclass
class Config:
    kalshi_base_url: str = DEFAULT_BASE_URL
    kalshi_api_key: str = ""
    kalshi_private_key_path: str = ""
    kalshi_private_key_pem: str = ""
    kalshi_timeout_s: float = 10.0
    check_exchange: bool = True
    dry_run: bool = True
    log_decisions: bool = False
    combined_max_price: Decimal = Decimal("1.00")
    fast_close_window_seconds: int = 60
    fast_close_band_low: Decimal = Decimal("0.90")
    fast_close_band_high: Decimal = Decimal("0.97")
    order_count: int = 1
    time_in_force: str = "fill_or_kill"
    discovery_mode: str = "events"
    event_series_tickers: List[str] = field(default_factory=lambda: list(DEFAULT_15M_SERIES))
    event_ticker_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_15M_SERIES))
    series_category: str = "crypto"
    series_frequency: str = "fifteen_min"
    events_limit: int = 200
    min_close_ts: Optional[int] = None
    btc_only: bool = False
    crypto_only: bool = True
    crypto_assets: List[str] = field(default_factory=lambda: ["btc", "eth", "sol"])
    interval_regex: str = DEFAULT_INTERVAL_REGEX
    cex_enable: bool = True
    cex_min_sources: int = 2
    slack_webhook_url: str = ""
    logging_level: str = "INFO"
    logging_json: bool = False

    @property
    def has_credentials(self) -> bool:
        return bool(self.kalshi_api_key and (self.kalshi_private_key_pem or self.kalshi_private_key_path))

    def policy(self) -> Policy:
        """Build the validated Policy snapshot; raises PolicyError on bad thresholds."""
        return Policy(
            combined_max_price=self.combined_max_price,
            fast_close_window_seconds=self.fast_close_window_seconds,
            fast_close_band=PriceBand(self.fast_close_band_low, self.fast_close_band_high),
            order_count=self.order_count,
            time_in_force=TimeInForce.parse(self.time_in_force),
        )

    def discovery_settings(self) -> DiscoverySettings:
        return DiscoverySettings(
            mode=self.discovery_mode,
            event_series_tickers=list(self.event_series_tickers),
            event_ticker_prefixes=list(self.event_ticker_prefixes),
            crypto_assets=list(self.crypto_assets),
            series_category=self.series_category,
            series_frequency=self.series_frequency,
            events_limit=self.events_limit,
            min_close_ts=self.min_close_ts,
        )

    def market_filter(self) -> MarketFilter:
        return MarketFilter(
            crypto_only=self.crypto_only,
            btc_only=self.btc_only,
            crypto_assets=list(self.crypto_assets),
            interval_regex=self.interval_regex,
        )

    def redacted(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            if f.name in ("kalshi_api_key", "kalshi_private_key_pem", "slack_webhook_url") and v:
                v = "***redacted***"
            elif isinstance(v, Decimal):
                v = str(v)
            out[f.name] = v
        return out


def _csv(raw: Any, upper: bool = False) -> List[str]:
    items = raw if isinstance(raw, list) else str(raw).split(",")
    out = [str(s).strip() for s in items]
    out = [s.upper() if upper else s.lower() for s in out if s]
    return out


def _flag(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _int(raw: Any, name: str) -> int:
    try:
        return int(str(raw).strip())
    except ValueError as e:
        raise ConfigError(f"{name}: expected an integer, got {raw!r}") from e


def _float(raw: Any, name: str) -> float:
    try:
        return float(str(raw).strip())
    except ValueError as e:
        raise ConfigError(f"{name}: expected a number, got {raw!r}") from e


def _dec(raw: Any, name: str) -> Decimal:
    try:
        return to_decimal(raw, name)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _from_dict(data: Mapping[str, Any]) -> Config:
    kal = data.get("kalshi", {})
    run = data.get("run", {})
    pol = data.get("policy", {})
    disc = data.get("discovery", {})
    flt = data.get("filter", {})
    cex = data.get("cex", {})
    slack = data.get("slack", {})
    log = data.get("logging", {})
    d = Config()
    min_close = disc.get("min_close_ts")
    return Config(
        kalshi_base_url=str(kal.get("base_url", d.kalshi_base_url)),
        kalshi_api_key=str(kal.get("api_key", "")),
        kalshi_private_key_path=str(kal.get("private_key_path", "")),
        kalshi_private_key_pem=str(kal.get("private_key_pem", "")),
        kalshi_timeout_s=_float(kal.get("timeout_s", d.kalshi_timeout_s), "kalshi.timeout_s"),
        check_exchange=_flag(kal.get("check_exchange", True)),
        dry_run=_flag(run.get("dry_run", True)),
        log_decisions=_flag(run.get("log_decisions", False)),
        combined_max_price=_dec(pol.get("combined_max_price", d.combined_max_price), "policy.combined_max_price"),
        fast_close_window_seconds=_int(pol.get("fast_close_window_seconds", d.fast_close_window_seconds), "policy.fast_close_window_seconds"),
        fast_close_band_low=_dec(pol.get("fast_close_band_low", d.fast_close_band_low), "policy.fast_close_band_low"),
        fast_close_band_high=_dec(pol.get("fast_close_band_high", d.fast_close_band_high), "policy.fast_close_band_high"),
        order_count=_int(pol.get("order_count", d.order_count), "policy.order_count"),
        time_in_force=str(pol.get("time_in_force", d.time_in_force)),
        discovery_mode=str(disc.get("mode", d.discovery_mode)).lower(),
        event_series_tickers=_csv(disc.get("event_series_tickers", d.event_series_tickers), upper=True),
        event_ticker_prefixes=_csv(disc.get("event_ticker_prefixes", d.event_ticker_prefixes), upper=True),
        series_category=str(disc.get("series_category", d.series_category)),
        series_frequency=str(disc.get("series_frequency", d.series_frequency)),
        events_limit=_int(disc.get("events_limit", d.events_limit), "discovery.events_limit"),
        min_close_ts=_int(min_close, "discovery.min_close_ts") if min_close is not None else None,
        btc_only=_flag(flt.get("btc_only", False)),
        crypto_only=_flag(flt.get("crypto_only", True)),
        crypto_assets=_csv(flt.get("crypto_assets", d.crypto_assets)),
        interval_regex=str(flt.get("interval_regex", d.interval_regex)),
        cex_enable=_flag(cex.get("enable", True)),
        cex_min_sources=_int(cex.get("min_sources", d.cex_min_sources), "cex.min_sources"),
        slack_webhook_url=str(slack.get("webhook_url", "")),
        logging_level=str(log.get("level", d.logging_level)),
        logging_json=_flag(log.get("json", False)),
    )


def load_config(path: str | Path) -> Config:
    p = Path(path)
    try:
        with p.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"failed to read config {p}: {e}") from e
    return _from_dict(data)


def _deep_merge(a: dict, b: dict) -> dict:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config_stack(paths: List[str | Path]) -> Config:
    """Deep-merge TOML files in order (later wins); missing files are skipped."""
    merged: dict = {}
    for p in paths:
        pth = Path(p)
        if not pth.exists():
            continue
        try:
            with pth.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"failed to parse config {pth}: {e}") from e
        merged = _deep_merge(merged, data)
    return _from_dict(merged)


# env var -> (Config field, parser)
_ENV_FIELDS = {
    "KALSHI_BASE_URL": ("kalshi_base_url", str),
    "KALSHI_API_KEY": ("kalshi_api_key", str),
    "KALSHI_PRIVATE_KEY_PATH": ("kalshi_private_key_path", str),
    "KALSHI_API_SECRET": ("kalshi_private_key_pem", str),
    "KALSHI_PRIVATE_KEY_PEM": ("kalshi_private_key_pem", str),
    "DRY_RUN": ("dry_run", _flag),
    "CHECK_EXCHANGE": ("check_exchange", _flag),
    "LOG_DECISIONS": ("log_decisions", _flag),
    "BTC_ONLY": ("btc_only", _flag),
    "CRYPTO_ONLY": ("crypto_only", _flag),
    "CRYPTO_ASSETS": ("crypto_assets", _csv),
    "EVENT_TICKER_PREFIXES": ("event_ticker_prefixes", lambda v: _csv(v, upper=True)),
    "EVENT_SERIES_TICKERS": ("event_series_tickers", lambda v: _csv(v, upper=True)),
    "MIN_CLOSE_TS": ("min_close_ts", lambda v: _int(v, "MIN_CLOSE_TS")),
    "INTERVAL_REGEX": ("interval_regex", str),
    "COMBINED_MAX_PRICE": ("combined_max_price", lambda v: _dec(v, "COMBINED_MAX_PRICE")),
    "FAST_CLOSE_WINDOW_SECONDS": ("fast_close_window_seconds", lambda v: _int(v, "FAST_CLOSE_WINDOW_SECONDS")),
    "FAST_CLOSE_BAND_LOW": ("fast_close_band_low", lambda v: _dec(v, "FAST_CLOSE_BAND_LOW")),
    "FAST_CLOSE_BAND_HIGH": ("fast_close_band_high", lambda v: _dec(v, "FAST_CLOSE_BAND_HIGH")),
    "ORDER_COUNT": ("order_count", lambda v: _int(v, "ORDER_COUNT")),
    "TIME_IN_FORCE": ("time_in_force", str),
    "DISCOVERY_MODE": ("discovery_mode", lambda v: str(v).strip().lower()),
    "SERIES_CATEGORY": ("series_category", str),
    "SERIES_FREQUENCY": ("series_frequency", str),
    "EVENTS_LIMIT": ("events_limit", lambda v: _int(v, "EVENTS_LIMIT")),
    "ENABLE_CEX_LAG_SCAN": ("cex_enable", _flag),
    "CEX_LAG_MIN_SOURCES": ("cex_min_sources", lambda v: _int(v, "CEX_LAG_MIN_SOURCES")),
    "SLACK_WEBHOOK_URL": ("slack_webhook_url", str),
    "LOG_LEVEL": ("logging_level", str),
}


def apply_env(cfg: Config, env: Optional[Mapping[str, str]] = None) -> Config:
    """Overlay environment variables on a loaded config (env wins over files)."""
    env = os.environ if env is None else env
    changes: Dict[str, Any] = {}
    for name, (attr, parse) in _ENV_FIELDS.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        changes[attr] = parse(raw)
    return replace(cfg, **changes)


def resolve_config(paths: Optional[List[str | Path]] = None, env: Optional[Mapping[str, str]] = None) -> Config:
    cfg = load_config_stack(paths or [])
    cfg = apply_env(cfg, env)
    validate_config(cfg)
    return cfg


def validate_config(cfg: Config) -> List[str]:
    """Raise on fatal problems; return non-fatal warnings."""
    if cfg.discovery_mode not in DISCOVERY_MODES:
        raise ConfigError(f"discovery mode must be one of {', '.join(DISCOVERY_MODES)}, got {cfg.discovery_mode!r}")
    if cfg.events_limit <= 0:
        raise ConfigError("discovery.events_limit must be > 0")
    if cfg.cex_min_sources < 1:
        raise ConfigError("cex.min_sources must be >= 1")
    cfg.policy()
    warnings: List[str] = []
    if not cfg.dry_run and not cfg.has_credentials:
        warnings.append("live mode requires KALSHI_API_KEY and KALSHI_PRIVATE_KEY_PEM/KALSHI_PRIVATE_KEY_PATH")
    return warnings


__all__ = [
    "Config",
    "ConfigError",
    "PolicyError",
    "apply_env",
    "load_config",
    "load_config_stack",
    "resolve_config",
    "validate_config",
]
