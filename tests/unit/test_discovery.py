from datetime import datetime, timedelta, timezone

from kalshibot.core.models import Market
from kalshibot.ingestion.discovery import (
    DEFAULT_INTERVAL_REGEX,
    DiscoverySettings,
    MarketFilter,
    canonical_frequency,
    collect_candidates,
    is_crypto_event,
    is_target_event,
)


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _m(ticker, title, ttl=600, event=None, yes="0.48", no="0.49"):
    return Market(
        ticker=ticker,
        title=title,
        close_time=NOW + timedelta(seconds=ttl),
        event_ticker=event,
        yes_ask_dollars=yes,
        no_ask_dollars=no,
    )


def test_collect_candidates_filters_and_keeps_supplier_order():
    markets = [
        _m("KXETH15M-A", "ETH price up in next 15 mins?"),
        _m("KXBTC15M-A", "Bitcoin above 100k in 15 min?"),
        _m("KXBTCD-A", "BTC above 100k at 5pm?"),
        _m("RAIN-A", "Rain in NYC in next 15 minutes?"),
        _m("KXSOL15M-A", "SOL 15m up or down", ttl=-1),
    ]
    quotes = collect_candidates(markets, MarketFilter(), NOW)
    assert [q.ticker for q in quotes] == ["KXETH15M-A", "KXBTC15M-A"]
    assert quotes[0].seconds_to_close == 600
    assert str(quotes[0].yes_ask) == "0.48"


def test_collect_candidates_keeps_first_duplicate():
    markets = [
        _m("KXBTC15M-A", "BTC 15 min", yes="0.40"),
        _m("KXBTC15M-A", "BTC 15 min", yes="0.10"),
    ]
    quotes = collect_candidates(markets, MarketFilter(), NOW)
    assert len(quotes) == 1
    assert str(quotes[0].yes_ask) == "0.40"


def test_unparsable_ask_becomes_none_not_an_error():
    quotes = collect_candidates([_m("KXBTC15M-A", "BTC 15 min", yes="oops")], MarketFilter(), NOW)
    assert quotes[0].yes_ask is None


def test_seconds_to_close_floors_fractions():
    m = _m("KXBTC15M-A", "BTC 15 min")
    quotes = collect_candidates([m], MarketFilter(), m.close_time - timedelta(milliseconds=500))
    assert quotes[0].seconds_to_close == 0


def test_btc_only_filter():
    f = MarketFilter(btc_only=True)
    assert f.reject_reason(_m("E", "ETH 15 min")) == "not BTC-related"
    assert f.reject_reason(_m("B", "Bitcoin 15 min")) is None


def test_crypto_only_off_accepts_any_asset_with_interval():
    f = MarketFilter(crypto_only=False)
    assert f.reject_reason(_m("R", "Rain in 15 minutes")) is None
    assert f.reject_reason(_m("R", "Rain tomorrow")) == "not 15-minute interval"


def test_interval_matches_subtitle_and_invalid_regex_falls_back():
    f = MarketFilter(interval_regex="([")
    assert f.interval_regex == "(["
    m = Market(ticker="X", title="BTC up?", close_time=NOW, subtitle="next 15m")
    assert f.matches_interval(m)
    assert MarketFilter(interval_regex=DEFAULT_INTERVAL_REGEX).matches_interval(m)


def test_canonical_frequency():
    assert canonical_frequency("15m") == "fifteen_min"
    assert canonical_frequency("15-Minutes") == "fifteen_min"
    assert canonical_frequency("Fifteen_Min") == "fifteen_min"
    assert canonical_frequency("hourly") == "hourly"
    assert canonical_frequency("") == ""


def test_event_targeting():
    s = DiscoverySettings()
    assert is_target_event("kxbtc15m-26jan011215", s.event_ticker_prefixes)
    assert not is_target_event("KXBTCD-26JAN01", s.event_ticker_prefixes)
    assert is_crypto_event("KXBTCD-26JAN01", ["Bitcoin daily"], s)
    assert not is_crypto_event("INX-26JAN01", ["S&P 500", None], s)
