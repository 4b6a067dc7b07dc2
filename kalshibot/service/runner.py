from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from kalshibot.core.errors import RunAborted
from kalshibot.core.models import Quote
from kalshibot.core.pricing import format_price
from kalshibot.exec.engine import FILLED, REJECTED, SIMULATED_FILL, TRANSPORT_ERROR, ExecutionEngine, Mode, OrderOutcome
from kalshibot.exec.planning import OrderIntent, plan
from kalshibot.observability.metrics import inc, inc_labelled
from kalshibot.strategy.qualify import Policy, Verdict, evaluate


logger = logging.getLogger(__name__)


@dataclass
class DecisionRecord:
    quote: Quote
    verdict: Verdict
    intents: Tuple[OrderIntent, ...] = ()
    outcomes: List[OrderOutcome] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """One leg filled while the other was rejected."""
        statuses = {o.status for o in self.outcomes}
        return len(self.outcomes) == 2 and REJECTED in statuses and bool(statuses & {FILLED, SIMULATED_FILL})

    def to_dict(self) -> dict:
        q = self.quote
        return {
            "ticker": q.ticker,
            "title": q.title,
            "yes_ask": format_price(q.yes_ask),
            "no_ask": format_price(q.no_ask),
            "seconds_to_close": q.seconds_to_close,
            "qualified": self.verdict.qualified,
            "reason": self.verdict.reason.value,
            "detail": self.verdict.detail,
            "intents": [i.to_dict() for i in self.intents],
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class RunSummary:
    mode: Mode
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    markets_considered: int = 0
    qualified: Counter = field(default_factory=Counter)
    skipped: Counter = field(default_factory=Counter)
    orders_submitted: int = 0
    orders_filled: int = 0
    orders_rejected: int = 0
    orders_simulated: int = 0
    transport_errors: int = 0
    partial_pairs: int = 0
    decisions: List[DecisionRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def qualified_total(self) -> int:
        return sum(self.qualified.values())

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    @property
    def opportunities(self) -> List[DecisionRecord]:
        return [d for d in self.decisions if d.verdict.qualified]

    @property
    def ok(self) -> bool:
        return self.error is None

    def record_skip(self, quote: Quote, verdict: Verdict) -> None:
        self.markets_considered += 1
        self.skipped[verdict.reason] += 1
        self.decisions.append(DecisionRecord(quote, verdict))

    def record_execution(self, quote: Quote, verdict: Verdict, intents: Iterable[OrderIntent], outcomes: List[OrderOutcome]) -> DecisionRecord:
        self.markets_considered += 1
        self.qualified[verdict.reason] += 1
        rec = DecisionRecord(quote, verdict, tuple(intents), list(outcomes))
        for o in rec.outcomes:
            self.orders_submitted += 1
            if o.status == FILLED:
                self.orders_filled += 1
            elif o.status == REJECTED:
                self.orders_rejected += 1
            elif o.status == SIMULATED_FILL:
                self.orders_simulated += 1
            elif o.status == TRANSPORT_ERROR:
                self.transport_errors += 1
        if rec.partial:
            self.partial_pairs += 1
        self.decisions.append(rec)
        return rec

    def finish(self, error: Optional[str] = None) -> "RunSummary":
        self.error = error
        self.finished_at = datetime.now(timezone.utc)
        return self

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "markets_considered": self.markets_considered,
            "qualified": {str(k): v for k, v in sorted(self.qualified.items())},
            "skipped": {str(k): v for k, v in sorted(self.skipped.items())},
            "orders_submitted": self.orders_submitted,
            "orders_filled": self.orders_filled,
            "orders_rejected": self.orders_rejected,
            "orders_simulated": self.orders_simulated,
            "transport_errors": self.transport_errors,
            "partial_pairs": self.partial_pairs,
            "error": self.error,
            "decisions": [d.to_dict() for d in self.decisions],
        }


def _log_decision(quote: Quote, verdict: Verdict, level: int) -> None:
    logger.log(
        level,
        "Evaluating market %s | title='%s' subtitle='%s' event='%s' close=%s ttl=%ss yes=%s no=%s",
        quote.ticker,
        quote.title,
        quote.subtitle or "",
        quote.event_ticker or "",
        quote.close_time.isoformat(),
        quote.seconds_to_close,
        format_price(quote.yes_ask),
        format_price(quote.no_ask),
    )
    logger.log(level, "  -> %s", verdict.label)


def run(
    candidates: Iterable[Quote],
    policy: Policy,
    engine: ExecutionEngine,
    run_id: Optional[str] = None,
    log_decisions: bool = False,
) -> RunSummary:
    """Evaluate every candidate in supplier order and execute the qualifying ones.

    Raises RunAborted (carrying the finished partial summary) when the engine
    reports a transport error; orders placed before that stand.
    """
    summary = RunSummary(mode=engine.mode)
    level = logging.INFO if log_decisions else logging.DEBUG
    for quote in candidates:
        verdict = evaluate(quote, policy)
        _log_decision(quote, verdict, level)
        inc_labelled("decisions", {"reason": verdict.reason.value}, 1)
        if not verdict.qualified:
            summary.record_skip(quote, verdict)
            continue
        pair = plan(quote, verdict, policy, run_id=run_id)
        outcomes = engine.execute(pair)
        summary.record_execution(quote, verdict, pair, outcomes)
        failed = [o for o in outcomes if o.status == TRANSPORT_ERROR]
        if failed:
            msg = f"transport error on {failed[0].intent.ticker} {failed[0].intent.side.value}: {failed[0].reason}"
            summary.finish(error=msg)
            inc("runs_aborted", 1)
            logger.error("aborting run: %s", msg)
            raise RunAborted(msg, summary)
    logger.info("Opportunities found: %d", summary.qualified_total)
    inc("runs_completed", 1)
    return summary.finish()
