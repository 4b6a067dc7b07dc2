import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from kalshibot.adapters.kalshi.client import FakeExchange, KalshiHttpClient, build_exchange, split_base_url
from kalshibot.adapters.kalshi.signing import RequestSigner
from kalshibot.core.errors import ExchangeTransportError
from kalshibot.core.models import Side
from kalshibot.exec.planning import OrderIntent
from kalshibot.ingestion.discovery import DiscoverySettings
from kalshibot.observability.metrics import get_counter
from kalshibot.strategy.qualify import TimeInForce


SIGNER = RequestSigner("key-id", rsa.generate_private_key(public_exponent=65537, key_size=2048))
BASE = "https://kalshi.test/trade-api/v2"
CLOSE = "2026-01-01T12:15:00Z"


def _client(handler) -> KalshiHttpClient:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://kalshi.test")
    return KalshiHttpClient(BASE, SIGNER, client=http)


def _intent(side=Side.YES, price="0.48"):
    return OrderIntent(
        ticker="KXBTC15M-A",
        side=side,
        count=2,
        limit_price=Decimal(price),
        time_in_force=TimeInForce.FILL_OR_KILL,
        client_order_id=f"KXBTC15M-A-{side.value}-2",
    )


def test_split_base_url():
    assert split_base_url("https://h/trade-api/v2/") == ("https://h", "/trade-api/v2")
    assert split_base_url("https://h") == ("https://h", "/trade-api/v2")


def test_event_discovery_pages_and_signs_requests():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.url.path == "/trade-api/v2/events"
        assert request.headers["KALSHI-ACCESS-KEY"] == "key-id"
        assert request.headers["KALSHI-ACCESS-SIGNATURE"]
        assert request.url.params["series_ticker"] == "KXBTC15M"
        assert request.url.params["with_nested_markets"] == "true"
        if "cursor" not in request.url.params:
            return httpx.Response(200, json={
                "events": [
                    {
                        "event_ticker": "KXBTC15M-E1",
                        "title": "BTC 15 min",
                        "markets": [{"ticker": "KXBTC15M-E1-A", "title": "BTC up in 15 mins?", "close_time": CLOSE, "yes_ask_dollars": "0.48"}],
                    },
                    {"event_ticker": "INX-E", "title": "S&P", "markets": [{"ticker": "INX-A", "close_time": CLOSE}]},
                ],
                "cursor": "c2",
            })
        assert request.url.params["cursor"] == "c2"
        return httpx.Response(200, json={
            "events": [{"event_ticker": "KXBTC15M-E2", "markets": [{"ticker": "KXBTC15M-E2-A", "close_time": CLOSE}]}],
            "cursor": "",
        })

    settings = DiscoverySettings(event_series_tickers=["KXBTC15M"], min_close_ts=1767268800)
    markets = _client(handler).list_markets(settings)
    assert [m.ticker for m in markets] == ["KXBTC15M-E1-A", "KXBTC15M-E2-A"]
    assert markets[0].event_ticker == "KXBTC15M-E1"
    assert len(seen) == 2
    assert seen[0].url.params["min_close_ts"] == "1767268800"


def test_series_discovery_falls_back_to_all_markets():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path.endswith("/series"):
            return httpx.Response(200, json={"series": [{"ticker": "KXBTCD", "frequency": "daily"}]})
        assert request.url.params["status"] == "open"
        return httpx.Response(200, json={"markets": [{"ticker": "KXBTC15M-A", "close_time": CLOSE}]})

    markets = _client(handler).list_markets(DiscoverySettings(mode="series"))
    assert [m.ticker for m in markets] == ["KXBTC15M-A"]
    assert paths == ["/trade-api/v2/series", "/trade-api/v2/markets"]


def test_series_discovery_lists_matching_series():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/series"):
            return httpx.Response(200, json={"series": [
                {"ticker": "KXBTC15M", "frequency": "15m"},
                {"ticker": "KXBTCD", "frequency": "daily"},
            ]})
        assert request.url.params["series_ticker"] == "KXBTC15M"
        return httpx.Response(200, json={"markets": [{"ticker": "KXBTC15M-A", "close_time": CLOSE}]})

    markets = _client(handler).list_markets(DiscoverySettings(mode="series"))
    assert [m.ticker for m in markets] == ["KXBTC15M-A"]


def test_submit_order_posts_signed_limit_buy():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/trade-api/v2/portfolio/orders"
        body = json.loads(request.content)
        assert body == {
            "ticker": "KXBTC15M-A",
            "side": "no",
            "action": "buy",
            "count": 2,
            "type": "limit",
            "time_in_force": "fill_or_kill",
            "client_order_id": "KXBTC15M-A-no-2",
            "no_price_dollars": "0.4900",
        }
        return httpx.Response(201, json={"order": {"order_id": "ord-1", "status": "executed"}})

    ack = _client(handler).submit_order(_intent(Side.NO, "0.49"))
    assert ack.accepted
    assert ack.order_id == "ord-1"
    assert ack.status == "executed"


def test_order_rejection_is_an_ack_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"code": "insufficient_balance", "message": "not enough funds"}})

    ack = _client(handler).submit_order(_intent())
    assert not ack.accepted
    assert ack.reason == "400 insufficient_balance: not enough funds"


def test_canceled_fill_or_kill_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"order": {"order_id": "ord-2", "status": "canceled"}})

    ack = _client(handler).submit_order(_intent())
    assert not ack.accepted
    assert ack.order_id == "ord-2"
    assert ack.reason == "canceled: not filled"


@pytest.mark.parametrize("status", [401, 403, 500, 503])
def test_auth_and_server_errors_are_transport_errors(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text="nope")

    base = get_counter("kalshi_transport_errors")
    with pytest.raises(ExchangeTransportError) as ei:
        _client(handler).submit_order(_intent())
    assert ei.value.status_code == status
    assert get_counter("kalshi_transport_errors") == base + 1


def test_network_failure_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExchangeTransportError):
        _client(handler).submit_order(_intent())


def test_missing_order_id_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"order": None})

    with pytest.raises(ExchangeTransportError):
        _client(handler).submit_order(_intent())


def test_exchange_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/trade-api/v2/exchange/status"
        return httpx.Response(200, json={"exchange_active": True, "trading_active": False})

    st = _client(handler).exchange_status()
    assert st.exchange_active and not st.trading_active


def test_build_exchange_without_credentials_is_fake():
    ex = build_exchange(api_key="")
    assert isinstance(ex, FakeExchange)
    assert ex.now().tzinfo is not None


def test_client_clock_is_injectable():
    fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
    http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)), base_url="https://kalshi.test")
    c = KalshiHttpClient(BASE, SIGNER, client=http, clock=lambda: fixed)
    assert c.now() == fixed


def test_close_only_closes_owned_http_client():
    injected = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
    with KalshiHttpClient(BASE, SIGNER, client=injected):
        pass
    assert injected.is_closed is False

    owned = KalshiHttpClient(BASE, SIGNER)
    with owned as c:
        assert c is owned
    assert owned.client.is_closed is True
