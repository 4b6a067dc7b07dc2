from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Set

from kalshibot.core.models import Market, Quote, mentions_asset


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_REGEX = r"(?i)\b15\s?m(in(ute)?s?)?\b"
DEFAULT_15M_SERIES = ["KXBTC15M", "KXETH15M", "KXSOL15M"]
DISCOVERY_MODES = ("events", "series", "all")


@dataclass
class DiscoverySettings:
    mode: str = "events"
    event_series_tickers: List[str] = field(default_factory=lambda: list(DEFAULT_15M_SERIES))
    event_ticker_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_15M_SERIES))
    crypto_assets: List[str] = field(default_factory=lambda: ["btc", "eth", "sol"])
    series_category: str = "crypto"
    series_frequency: str = "fifteen_min"
    events_limit: int = 200
    min_close_ts: Optional[int] = None


@dataclass
class MarketFilter:
    crypto_only: bool = True
    btc_only: bool = False
    crypto_assets: List[str] = field(default_factory=lambda: ["btc", "eth", "sol"])
    interval_regex: str = DEFAULT_INTERVAL_REGEX

    def __post_init__(self) -> None:
        try:
            self._interval = re.compile(self.interval_regex)
        except re.error:
            logger.warning("invalid interval regex %r, using default", self.interval_regex)
            self._interval = re.compile(DEFAULT_INTERVAL_REGEX)

    def matches_interval(self, market: Market) -> bool:
        for text in (market.title, market.subtitle, market.event_ticker):
            if text and self._interval.search(text):
                return True
        return False

    def reject_reason(self, market: Market) -> Optional[str]:
        if self.btc_only and not market.is_btc_related():
            return "not BTC-related"
        if self.crypto_only and not market.is_crypto_related(self.crypto_assets):
            return "not crypto-related"
        if not self.matches_interval(market):
            return "not 15-minute interval"
        return None


def canonical_frequency(value: str) -> str:
    v = (value or "").strip().lower()
    if not v:
        return ""
    v = v.replace("-", "_").replace(" ", "_")
    if v in ("15m", "15min", "15mins", "15_min", "15_mins", "15minutes", "15_minutes", "fifteenmin", "fifteen_mins"):
        return "fifteen_min"
    return v


def is_target_event(event_ticker: str, prefixes: Iterable[str]) -> bool:
    ticker = (event_ticker or "").upper()
    return any(p and ticker.startswith(p.upper()) for p in prefixes)


def is_crypto_event(event_ticker: str, texts: Iterable[Optional[str]], settings: DiscoverySettings) -> bool:
    if is_target_event(event_ticker, settings.event_ticker_prefixes):
        return True
    for t in (event_ticker, *texts):
        if t and mentions_asset(t, settings.crypto_assets):
            return True
    return False


def collect_candidates(markets: Iterable[Market], market_filter: MarketFilter, now: datetime) -> List[Quote]:
    """Filter raw markets down to open 15-minute crypto markets and build Quotes.

    Keeps the supplier order and the first occurrence of a ticker that shows up
    through more than one discovery path.
    """
    pool = list(markets)
    out: List[Quote] = []
    seen: Set[str] = set()
    for m in pool:
        if m.ticker in seen:
            logger.debug("discovery skip %s: duplicate", m.ticker)
            continue
        reason = market_filter.reject_reason(m)
        if reason:
            logger.debug("discovery skip %s: %s", m.ticker, reason)
            continue
        seen.add(m.ticker)
        quote = Quote.from_market(m, now)
        if quote.seconds_to_close < 0:
            logger.debug("discovery skip %s: market already closed (%ss)", m.ticker, quote.seconds_to_close)
            continue
        out.append(quote)
    logger.info("candidates: %d of %d markets", len(out), len(pool))
    return out
