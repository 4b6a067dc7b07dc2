from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

import httpx
from pydantic import ValidationError

from kalshibot.core.errors import ConfigError, ExchangeTransportError
from kalshibot.core.models import Market, Side
from kalshibot.core.pricing import format_price
from kalshibot.exec.planning import OrderIntent
from kalshibot.ingestion.discovery import DiscoverySettings, canonical_frequency, is_crypto_event
from kalshibot.observability.metrics import inc, inc_labelled
from .schemas import CreateOrderResponse, EventsPage, ExchangeStatus, MarketsPage, SeriesPage, parse_markets
from .signing import RequestSigner, load_private_key


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"
DEFAULT_API_PREFIX = "/trade-api/v2"
PAGE_LIMIT = 1000


@dataclass(frozen=True)
class OrderAck:
    accepted: bool
    order_id: str = ""
    status: str = ""
    reason: Optional[str] = None


class ExchangeClient(Protocol):
    def now(self) -> datetime: ...

    def list_markets(self, settings: DiscoverySettings) -> List[Market]: ...

    def submit_order(self, intent: OrderIntent) -> OrderAck: ...

    def exchange_status(self) -> Optional[ExchangeStatus]: ...

    def close(self) -> None: ...


def split_base_url(raw: str) -> Tuple[str, str]:
    """Split 'https://host/trade-api/v2' into ('https://host', '/trade-api/v2')."""
    idx = raw.find("/trade-api/")
    if idx >= 0:
        return raw[:idx].rstrip("/"), raw[idx:].rstrip("/")
    return raw.rstrip("/"), DEFAULT_API_PREFIX


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FakeExchange:
    """A deterministic in-memory exchange for dry runs and tests.

    - list_markets returns the markets it was built with (no discovery logic)
    - orders for (ticker, side) in `reject` are rejected, in `fail_on` raise a transport error
    - everything else is accepted with sequential ids
    """

    def __init__(
        self,
        markets: Optional[List[Market]] = None,
        reject: Optional[Set[Tuple[str, Side]]] = None,
        fail_on: Optional[Set[Tuple[str, Side]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        status: Optional[ExchangeStatus] = None,
    ):
        self.markets = list(markets or [])
        self.reject = set(reject or ())
        self.fail_on = set(fail_on or ())
        self.submitted: List[OrderIntent] = []
        self._clock = clock or _utcnow
        self._status = status
        self._seq = 0

    def now(self) -> datetime:
        return self._clock()

    def list_markets(self, settings: DiscoverySettings) -> List[Market]:
        return list(self.markets)

    def submit_order(self, intent: OrderIntent) -> OrderAck:
        self.submitted.append(intent)
        key = (intent.ticker, intent.side)
        if key in self.fail_on:
            raise ExchangeTransportError(f"simulated transport failure for {intent.ticker} {intent.side}")
        self._seq += 1
        if key in self.reject:
            return OrderAck(accepted=False, order_id="", status="rejected", reason="simulated rejection")
        return OrderAck(accepted=True, order_id=f"fake-{self._seq}", status="executed")

    def exchange_status(self) -> Optional[ExchangeStatus]:
        return self._status

    def close(self) -> None:
        pass


class KalshiHttpClient:
    """Signed HTTP client for the Kalshi trade API.

    Every request carries KALSHI-ACCESS-* headers signed over timestamp + method + path.
    Network failures, auth failures and 5xx responses raise ExchangeTransportError;
    other 4xx responses to an order are returned as rejected acks.
    """

    def __init__(
        self,
        base_url: str,
        signer: RequestSigner,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.base_url, self.api_prefix = split_base_url(base_url)
        self.signer = signer
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=self.base_url, timeout=timeout)
        self._clock = clock or _utcnow

    def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "KalshiHttpClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @classmethod
    def from_credentials(
        cls,
        base_url: str,
        api_key: str,
        private_key_pem: Optional[str] = None,
        private_key_path: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> "KalshiHttpClient":
        if not api_key:
            raise ConfigError("KALSHI_API_KEY not set")
        key = load_private_key(pem=private_key_pem, path=private_key_path)
        return cls(base_url, RequestSigner(api_key, key), client=client, timeout=timeout)

    def now(self) -> datetime:
        return self._clock()

    def _send(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, body: Optional[dict] = None) -> httpx.Response:
        full_path = f"{self.api_prefix}{path}"
        ts = str(int(time.time() * 1000))
        headers = self.signer.headers(ts, method, full_path)
        try:
            resp = self.client.request(method, full_path, params=params, json=body, headers=headers)
        except httpx.HTTPError as e:
            inc("kalshi_transport_errors", 1)
            raise ExchangeTransportError(f"{method} {path} failed: {e}") from e
        if resp.status_code in (401, 403) or resp.status_code >= 500:
            inc("kalshi_transport_errors", 1)
            raise ExchangeTransportError(f"{method} {path} failed: {resp.status_code} - {resp.text}", status_code=resp.status_code)
        return resp

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = self._send("GET", path, params=params)
        if resp.status_code >= 400:
            raise ExchangeTransportError(f"GET {path} failed: {resp.status_code} - {resp.text}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise ExchangeTransportError(f"GET {path}: invalid JSON response") from e

    def _paged(self, path: str, params: Dict[str, Any], model, label: str):
        cursor: Optional[str] = None
        page = 0
        while True:
            page += 1
            q = dict(params)
            if cursor:
                q["cursor"] = cursor
            logger.info("Fetching %s page %d (cursor=%s)", label, page, cursor or "none")
            payload = self._get_json(path, q)
            try:
                parsed = model.model_validate(payload)
            except ValidationError as e:
                raise ExchangeTransportError(f"failed to parse {label} response: {e}") from e
            yield parsed
            cursor = parsed.next
            if not cursor:
                break

    # discovery

    def list_all_markets(self, series_ticker: Optional[str] = None) -> List[Market]:
        params: Dict[str, Any] = {"status": "open", "limit": PAGE_LIMIT}
        label = "markets"
        if series_ticker:
            params["series_ticker"] = series_ticker
            label = f"markets for series {series_ticker}"
        out: List[Market] = []
        for page in self._paged("/markets", params, MarketsPage, label):
            out.extend(parse_markets(page.markets))
        return out

    def list_event_markets(self, settings: DiscoverySettings) -> List[Market]:
        out: List[Market] = []
        for series in settings.event_series_tickers or [""]:
            params: Dict[str, Any] = {"status": "open", "with_nested_markets": "true", "limit": settings.events_limit}
            label = "events"
            if series:
                params["series_ticker"] = series
                label = f"events for series {series}"
            if settings.min_close_ts is not None:
                params["min_close_ts"] = settings.min_close_ts
            for page in self._paged("/events", params, EventsPage, label):
                for ev in page.events:
                    if not is_crypto_event(ev.event_ticker, (ev.title, ev.subtitle, ev.category), settings):
                        continue
                    logger.info("Crypto event: %s [%s] %s", ev.event_ticker, ev.category or "uncategorized", ev.title)
                    out.extend(parse_markets(ev.markets, event_ticker=ev.event_ticker))
        logger.info("Fetched %d markets via events.", len(out))
        return out

    def list_series_markets(self, settings: DiscoverySettings) -> List[Market]:
        category = settings.series_category.strip()
        frequency = canonical_frequency(settings.series_frequency)
        params: Dict[str, Any] = {"limit": PAGE_LIMIT}
        if category:
            params["category"] = category
        series = []
        for page in self._paged("/series", params, SeriesPage, f"series for category '{category}'"):
            series.extend(page.items)
        if not series:
            logger.warning("Series list empty for category='%s'. Falling back to full market list.", category)
            return self.list_all_markets()
        matched = [s for s in series if s.frequency and (not frequency or canonical_frequency(s.frequency) == frequency)]
        if not matched:
            logger.warning(
                "No series matched category='%s' frequency='%s' (%d total series). Falling back to full market list.",
                category,
                frequency,
                len(series),
            )
            return self.list_all_markets()
        logger.info("Matched %d series for category='%s' frequency='%s'", len(matched), category, frequency)
        out: List[Market] = []
        for s in matched:
            logger.info("Series %s [%s] %s", s.ticker, s.category or "", s.title or "untitled")
            out.extend(self.list_all_markets(series_ticker=s.ticker))
        logger.info("Fetched %d markets via series discovery.", len(out))
        return out

    def list_markets(self, settings: DiscoverySettings) -> List[Market]:
        if settings.mode == "events":
            return self.list_event_markets(settings)
        if settings.mode == "series":
            return self.list_series_markets(settings)
        out = self.list_all_markets()
        logger.info("Fetched %d markets total.", len(out))
        return out

    # trading

    def submit_order(self, intent: OrderIntent) -> OrderAck:
        body: Dict[str, Any] = {
            "ticker": intent.ticker,
            "side": intent.side.value,
            "action": "buy",
            "count": intent.count,
            "type": intent.order_type,
            "time_in_force": intent.time_in_force.value,
        }
        if intent.client_order_id:
            body["client_order_id"] = intent.client_order_id
        body[f"{intent.side.value}_price_dollars"] = format_price(intent.limit_price)
        resp = self._send("POST", "/portfolio/orders", body=body)
        if resp.status_code >= 400:
            inc_labelled("kalshi_order_rejects", {"market": intent.ticker, "code": str(resp.status_code)}, 1)
            return OrderAck(accepted=False, status="rejected", reason=_error_reason(resp))
        try:
            payload = CreateOrderResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise ExchangeTransportError(f"failed to parse create order response: {e}") from e
        order_id = (payload.order.order_id if payload.order else None) or payload.order_id
        if not order_id:
            raise ExchangeTransportError("missing order_id in create order response")
        status = (payload.order.status if payload.order else None) or "accepted"
        if status.lower() == "canceled":
            # fill_or_kill that could not fill comes back canceled
            return OrderAck(accepted=False, order_id=order_id, status=status, reason="canceled: not filled")
        return OrderAck(accepted=True, order_id=order_id, status=status)

    def exchange_status(self) -> Optional[ExchangeStatus]:
        logger.info("Checking exchange status...")
        payload = self._get_json("/exchange/status")
        try:
            return ExchangeStatus.model_validate(payload)
        except ValidationError as e:
            raise ExchangeTransportError(f"failed to parse exchange status: {e}") from e


def _error_reason(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} - {resp.text}".strip()
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        code = err.get("code") or ""
        msg = err.get("message") or ""
        return f"{resp.status_code} {code}: {msg}".strip()
    return f"{resp.status_code} - {json.dumps(data)}"


def build_exchange(
    base_url: str = DEFAULT_BASE_URL,
    api_key: str = "",
    private_key_pem: Optional[str] = None,
    private_key_path: Optional[str] = None,
    timeout_s: float = 10.0,
    markets: Optional[List[Market]] = None,
    client: Optional[httpx.Client] = None,
) -> ExchangeClient:
    """Live HTTP client when credentials are present, otherwise the fake exchange."""
    if api_key and (private_key_pem or private_key_path):
        return KalshiHttpClient.from_credentials(
            base_url,
            api_key,
            private_key_pem=private_key_pem,
            private_key_path=private_key_path,
            timeout=timeout_s,
            client=client,
        )
    return FakeExchange(markets=markets)
