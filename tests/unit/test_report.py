from datetime import datetime, timedelta, timezone
from decimal import Decimal

from kalshibot.adapters.cex import AssetReference, VenueQuote
from kalshibot.core.models import Quote
from kalshibot.exec.engine import ExecutionEngine, Mode
from kalshibot.observability.report import error_lines, format_ttl, render_console, render_slack
from kalshibot.service.runner import run
from kalshibot.strategy.qualify import Policy


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _summary():
    quotes = [
        Quote("KXBTC15M-A", "BTC up in 15 mins?", NOW + timedelta(seconds=600), Decimal("0.55"), Decimal("0.50"), 600),
        Quote("KXETH15M-A", "ETH up in 15 mins?", NOW + timedelta(seconds=125), Decimal("0.48"), Decimal("0.49"), 125),
    ]
    return run(quotes, Policy(), ExecutionEngine(None, Mode.DRY_RUN))


def test_format_ttl():
    assert format_ttl(600) == "TTL 10m00s"
    assert format_ttl(65) == "TTL 1m05s"
    assert format_ttl(-3) == "TTL 0m00s"


def test_render_console():
    refs = {"BTC": AssetReference("BTC", 100.5, [VenueQuote("coinbase", 101.0), VenueQuote("kraken", 100.0)])}
    out = render_console(_summary(), refs)
    assert "mode: DRY_RUN" in out
    assert "markets considered: 2" in out
    assert "opportunities: 1" in out
    assert "skipped combined_price_too_high: 1" in out
    assert "YES x1 @ 0.4800 -> simulated_fill" in out
    assert "cex ref: BTC 100.50" in out
    assert out.endswith("result: OK")


def test_render_slack_lists_opportunities_first():
    text = render_slack(_summary(), "DRY_RUN", now=NOW)
    lines = text.splitlines()
    assert lines[0] == f"*Kalshi 15m bot run* `DRY_RUN` `{NOW.isoformat()}`"
    assert "Opportunities: 1" in lines
    assert "Orders: 2 filled, 0 rejected" in lines
    assert "Result: OK" in lines
    hi = lines.index("*Highlights*")
    assert lines[hi + 1].startswith("- *ETH up in 15 mins?* (KXETH15M-A) | YES 0.4800 / NO 0.4900 | TTL 2m05s | *QUALIFY: ")
    assert lines[hi + 1].endswith("| YES simulated_fill, NO simulated_fill")
    assert lines[hi + 2].endswith("*skip: combined 1.0500 >= threshold 1.0000*")


def test_render_slack_error_without_summary():
    text = render_slack(None, "LIVE", now=NOW, error="exchange inactive\nsecond line")
    assert "Result: ERROR" in text
    assert "*Error Details*\n- exchange inactive\n- second line" in text
    assert "Opportunities" not in text
    assert "*Highlights*" not in text


def test_error_lines_truncate():
    err = "\n".join(f"e{i}" for i in range(10))
    lines = error_lines(err)
    assert lines[:6] == ["e0", "e1", "e2", "e3", "e4", "e5"]
    assert lines[-1] == "..."
    assert error_lines(None) == []
