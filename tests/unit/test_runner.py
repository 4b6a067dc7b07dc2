import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kalshibot.adapters.kalshi.client import FakeExchange
from kalshibot.core.errors import RunAborted
from kalshibot.core.models import Quote, Side
from kalshibot.exec.engine import ExecutionEngine, Mode
from kalshibot.observability.metrics import get_counter
from kalshibot.service.runner import run
from kalshibot.strategy.qualify import Policy, Reason


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _q(ticker, yes, no, ttl):
    return Quote(
        ticker=ticker,
        title=f"{ticker} 15 min",
        close_time=NOW + timedelta(seconds=ttl),
        yes_ask=Decimal(yes) if yes is not None else None,
        no_ask=Decimal(no) if no is not None else None,
        seconds_to_close=ttl,
    )


def _candidates():
    return [
        _q("M-CHEAP", "0.48", "0.49", 600),
        _q("M-RICH", "0.55", "0.50", 600),
        _q("M-FAST", "0.96", "0.80", 30),
        _q("M-CLOSED", "0.40", "0.40", -5),
        _q("M-NOQUOTE", None, "0.40", 600),
    ]


def test_dry_run_summary_counts():
    summary = run(_candidates(), Policy(), ExecutionEngine(None, Mode.DRY_RUN))
    assert summary.ok
    assert summary.mode is Mode.DRY_RUN
    assert summary.markets_considered == 5
    assert summary.qualified_total == 2
    assert summary.qualified[Reason.COMBINED_PRICE] == 1
    assert summary.qualified[Reason.FAST_CLOSE_BAND] == 1
    assert summary.skipped[Reason.COMBINED_PRICE_TOO_HIGH] == 1
    assert summary.skipped[Reason.ALREADY_CLOSED] == 1
    assert summary.skipped[Reason.NO_QUOTE] == 1
    assert summary.orders_submitted == 4
    assert summary.orders_simulated == 4
    assert summary.orders_filled == 0
    assert [d.quote.ticker for d in summary.opportunities] == ["M-CHEAP", "M-FAST"]
    assert summary.finished_at is not None


def test_dry_and_live_reach_the_same_verdicts():
    dry = run(_candidates(), Policy(), ExecutionEngine(None, Mode.DRY_RUN))
    live = run(_candidates(), Policy(), ExecutionEngine(FakeExchange(), Mode.LIVE))
    assert [d.verdict for d in dry.decisions] == [d.verdict for d in live.decisions]
    assert live.orders_filled == 4
    assert live.orders_simulated == 0


def test_partial_pair_is_counted_and_run_continues():
    ex = FakeExchange(reject={("M-CHEAP", Side.NO)})
    summary = run(_candidates(), Policy(), ExecutionEngine(ex, Mode.LIVE))
    assert summary.ok
    assert summary.partial_pairs == 1
    assert summary.orders_rejected == 1
    assert summary.orders_filled == 3
    assert summary.decisions[0].partial


def test_transport_error_aborts_with_partial_summary():
    ex = FakeExchange(fail_on={("M-FAST", Side.NO)})
    base = get_counter("runs_aborted")
    with pytest.raises(RunAborted) as ei:
        run(_candidates(), Policy(), ExecutionEngine(ex, Mode.LIVE))
    summary = ei.value.summary
    assert not summary.ok
    assert "M-FAST" in summary.error
    assert summary.markets_considered == 3
    assert summary.orders_filled == 3
    assert summary.transport_errors == 1
    # nothing after the failing market is evaluated
    assert [d.quote.ticker for d in summary.decisions] == ["M-CHEAP", "M-RICH", "M-FAST"]
    assert get_counter("runs_aborted") == base + 1


def test_decision_lines_log_at_info_when_enabled(caplog):
    caplog.set_level(logging.INFO, logger="kalshibot.service.runner")
    run(_candidates()[:2], Policy(), ExecutionEngine(None, Mode.DRY_RUN), log_decisions=True)
    text = caplog.text
    assert "Evaluating market M-CHEAP" in text
    assert "-> QUALIFY: combined 0.9700 < 1.0000" in text
    assert "-> skip: combined 1.0500 >= threshold 1.0000" in text
    assert "Opportunities found: 1" in text


def test_decision_lines_are_debug_by_default(caplog):
    caplog.set_level(logging.INFO, logger="kalshibot.service.runner")
    run(_candidates()[:2], Policy(), ExecutionEngine(None, Mode.DRY_RUN))
    assert "Evaluating market" not in caplog.text
    assert "Opportunities found: 1" in caplog.text


def test_summary_to_dict_is_json_friendly():
    summary = run(_candidates(), Policy(), ExecutionEngine(None, Mode.DRY_RUN))
    d = summary.to_dict()
    assert d["mode"] == "DRY_RUN"
    assert d["qualified"] == {"combined_price": 1, "fast_close_band": 1}
    assert d["decisions"][0]["outcomes"][0]["status"] == "simulated_fill"
    assert d["decisions"][4]["yes_ask"] == "-"
