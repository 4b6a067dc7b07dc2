from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from statistics import median
from typing import Callable, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)

COINBASE_URL = "https://api.exchange.coinbase.com/products/{product}/ticker"
KRAKEN_URL = "https://api.kraken.com/0/public/Ticker"
BINANCE_URL = "https://api.binance.com/api/v3/ticker/bookTicker"

# asset -> (coinbase product, kraken pair, binance symbol)
VENUE_SYMBOLS: Dict[str, tuple] = {
    "BTC": ("BTC-USD", "XBTUSD", "BTCUSDT"),
    "ETH": ("ETH-USD", "ETHUSD", "ETHUSDT"),
}


@dataclass
class VenueQuote:
    venue: str
    mid: float


@dataclass
class AssetReference:
    asset: str
    reference_price: float
    quotes: List[VenueQuote]

    def describe(self) -> str:
        venues = ", ".join(f"{q.venue}:{q.mid:.2f}" for q in self.quotes)
        return f"{self.asset} {self.reference_price:.2f} from {len(self.quotes)} venues [{venues}]"


def _mid(venue: str, bid, ask) -> VenueQuote:
    b, a = float(bid), float(ask)
    if not (b > 0 and a > 0) or not (math.isfinite(b) and math.isfinite(a)):
        raise ValueError(f"{venue} invalid bid/ask")
    return VenueQuote(venue=venue, mid=(b + a) / 2.0)


def fetch_coinbase_mid(http: httpx.Client, product: str) -> VenueQuote:
    r = http.get(COINBASE_URL.format(product=product))
    r.raise_for_status()
    data = r.json()
    return _mid("coinbase", data["bid"], data["ask"])


def fetch_kraken_mid(http: httpx.Client, pair: str) -> VenueQuote:
    r = http.get(KRAKEN_URL, params={"pair": pair})
    r.raise_for_status()
    result = r.json().get("result") or {}
    if not isinstance(result, dict) or not result:
        raise ValueError("kraken response missing result object")
    first = next(iter(result.values()))
    return _mid("kraken", first["b"][0], first["a"][0])


def fetch_binance_mid(http: httpx.Client, symbol: str) -> VenueQuote:
    r = http.get(BINANCE_URL, params={"symbol": symbol})
    r.raise_for_status()
    data = r.json()
    return _mid("binance", data["bidPrice"], data["askPrice"])


def build_reference(asset: str, quotes: List[VenueQuote], min_sources: int) -> Optional[AssetReference]:
    good = [q for q in quotes if math.isfinite(q.mid) and q.mid > 0]
    if not good or len(good) < min_sources:
        return None
    return AssetReference(asset=asset, reference_price=float(median(q.mid for q in good)), quotes=good)


def scan_references(min_sources: int = 2, client: Optional[httpx.Client] = None) -> Dict[str, AssetReference]:
    """Median mid of BTC/ETH across public CEX tickers; informational only.

    A venue that errors is dropped; an asset with fewer than min_sources
    usable venues is left out of the result.
    """
    http = client or httpx.Client(timeout=3.0)
    out: Dict[str, AssetReference] = {}
    fetchers: List[tuple[Callable[[httpx.Client, str], VenueQuote], int]] = [
        (fetch_coinbase_mid, 0),
        (fetch_kraken_mid, 1),
        (fetch_binance_mid, 2),
    ]
    try:
        for asset, symbols in VENUE_SYMBOLS.items():
            quotes: List[VenueQuote] = []
            for fetch, idx in fetchers:
                try:
                    quotes.append(fetch(http, symbols[idx]))
                except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
                    logger.debug("cex %s %s failed: %s", fetch.__name__, asset, e)
            ref = build_reference(asset, quotes, min_sources)
            if ref is not None:
                out[asset] = ref
                logger.info("CEX ref %s", ref.describe())
            else:
                logger.info("CEX ref %s unavailable (%d/%d sources)", asset, len(quotes), min_sources)
    finally:
        if client is None:
            http.close()
    return out
