from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from kalshibot.adapters.kalshi.client import ExchangeClient
from kalshibot.core.errors import ExchangeTransportError
from kalshibot.core.pricing import format_price
from kalshibot.exec.planning import OrderIntent
from kalshibot.observability.metrics import Timer, record_order


logger = logging.getLogger(__name__)


class Mode(str, Enum):
    LIVE = "LIVE"
    DRY_RUN = "DRY_RUN"

    def __str__(self) -> str:
        return self.value


FILLED = "filled"
REJECTED = "rejected"
SIMULATED_FILL = "simulated_fill"
TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class OrderOutcome:
    intent: OrderIntent
    status: str
    order_id: str = ""
    reason: Optional[str] = None

    @classmethod
    def filled(cls, intent: OrderIntent, order_id: str) -> "OrderOutcome":
        return cls(intent, FILLED, order_id)

    @classmethod
    def rejected(cls, intent: OrderIntent, reason: str, order_id: str = "") -> "OrderOutcome":
        return cls(intent, REJECTED, order_id, reason)

    @classmethod
    def simulated(cls, intent: OrderIntent) -> "OrderOutcome":
        oid = f"dry-{intent.ticker}-{intent.side.value}-{format_price(intent.limit_price)}"
        return cls(intent, SIMULATED_FILL, oid)

    @classmethod
    def transport_error(cls, intent: OrderIntent, reason: str) -> "OrderOutcome":
        return cls(intent, TRANSPORT_ERROR, "", reason)

    @property
    def is_fill(self) -> bool:
        return self.status in (FILLED, SIMULATED_FILL)

    def to_dict(self) -> dict:
        return {"intent": self.intent.to_dict(), "status": self.status, "order_id": self.order_id, "reason": self.reason}


class ExecutionEngine:
    """Submit planned legs one at a time, in order, and report one outcome per attempted leg.

    A rejected leg does not stop the next one. A transport error does: the
    failing leg is reported as transport_error and the remaining legs are not
    attempted. Nothing is retried.
    """

    def __init__(self, client: Optional[ExchangeClient], mode: Mode = Mode.DRY_RUN):
        if mode is Mode.LIVE and client is None:
            raise ValueError("live execution requires an exchange client")
        self.client = client
        self.mode = mode

    def execute(self, intents: Iterable[OrderIntent]) -> List[OrderOutcome]:
        outcomes: List[OrderOutcome] = []
        with Timer("engine_execute"):
            for intent in intents:
                record_order("submitted", intent.ticker, intent.side.value)
                outcome = self._submit(intent)
                outcomes.append(outcome)
                record_order(outcome.status, intent.ticker, intent.side.value)
                logger.info(
                    "%s: %s %s x%d @ %s -> %s %s%s",
                    self.mode,
                    intent.ticker,
                    intent.side.value.upper(),
                    intent.count,
                    format_price(intent.limit_price),
                    outcome.status,
                    outcome.order_id,
                    f" ({outcome.reason})" if outcome.reason else "",
                )
                if outcome.status == TRANSPORT_ERROR:
                    break
        return outcomes

    def _submit(self, intent: OrderIntent) -> OrderOutcome:
        if self.mode is Mode.DRY_RUN:
            return OrderOutcome.simulated(intent)
        assert self.client is not None
        try:
            ack = self.client.submit_order(intent)
        except ExchangeTransportError as e:
            return OrderOutcome.transport_error(intent, str(e))
        if ack.accepted:
            return OrderOutcome.filled(intent, ack.order_id)
        return OrderOutcome.rejected(intent, ack.reason or ack.status or "rejected", order_id=ack.order_id)
