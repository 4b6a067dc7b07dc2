from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from kalshibot.core.pricing import parse_price


class Side(str, Enum):
    YES = "yes"
    NO = "no"

    def __str__(self) -> str:
        return self.value


_ASSET_ALIASES = {"btc": "bitcoin", "eth": "ethereum", "sol": "solana"}


@dataclass
class Market:
    ticker: str
    title: str
    close_time: datetime
    subtitle: Optional[str] = None
    event_ticker: Optional[str] = None
    status: Optional[str] = None
    yes_ask_dollars: Optional[str] = None
    no_ask_dollars: Optional[str] = None

    def haystack(self) -> str:
        parts = [self.title]
        if self.subtitle:
            parts.append(self.subtitle)
        if self.event_ticker:
            parts.append(self.event_ticker)
        return " ".join(parts).lower()

    def is_btc_related(self) -> bool:
        h = self.haystack()
        return "btc" in h or "bitcoin" in h

    def is_crypto_related(self, assets: List[str]) -> bool:
        return mentions_asset(self.haystack(), assets)


def mentions_asset(text: str, assets: List[str]) -> bool:
    """True when text mentions one of the asset symbols (or its long name)."""
    t = (text or "").lower()
    for asset in assets:
        a = asset.strip().lower()
        if not a:
            continue
        if a in t:
            return True
        alias = _ASSET_ALIASES.get(a)
        if alias and alias in t:
            return True
    return False


@dataclass(frozen=True)
class Quote:
    ticker: str
    title: str
    close_time: datetime
    yes_ask: Optional[Decimal]
    no_ask: Optional[Decimal]
    seconds_to_close: int
    subtitle: Optional[str] = None
    event_ticker: Optional[str] = None

    @property
    def combined(self) -> Optional[Decimal]:
        if self.yes_ask is None or self.no_ask is None:
            return None
        return self.yes_ask + self.no_ask

    def ask(self, side: Side) -> Optional[Decimal]:
        return self.yes_ask if side is Side.YES else self.no_ask

    @classmethod
    def from_market(cls, market: Market, now: datetime) -> "Quote":
        delta = (market.close_time - now).total_seconds()
        return cls(
            ticker=market.ticker,
            title=market.title,
            close_time=market.close_time,
            yes_ask=parse_price(market.yes_ask_dollars),
            no_ask=parse_price(market.no_ask_dollars),
            seconds_to_close=int(math.floor(delta)),
            subtitle=market.subtitle,
            event_ticker=market.event_ticker,
        )
