from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator, Optional

from kalshibot.core.errors import PlanningError
from kalshibot.core.models import Quote, Side
from kalshibot.core.pricing import format_price
from kalshibot.strategy.qualify import Policy, TimeInForce, Verdict


@dataclass(frozen=True)
class OrderIntent:
    ticker: str
    side: Side
    count: int
    limit_price: Decimal
    time_in_force: TimeInForce
    order_type: str = "limit"
    client_order_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ticker": self.ticker,
            "side": self.side.value,
            "count": self.count,
            "limit_price": format_price(self.limit_price),
            "time_in_force": self.time_in_force.value,
            "order_type": self.order_type,
            "client_order_id": self.client_order_id,
        }


@dataclass(frozen=True)
class OrderPair:
    """Both legs of one qualifying market. Only built via OrderPair.build."""

    yes: OrderIntent
    no: OrderIntent

    def __iter__(self) -> Iterator[OrderIntent]:
        yield self.yes
        yield self.no

    def __len__(self) -> int:
        return 2

    @classmethod
    def build(cls, quote: Quote, policy: Policy, run_id: Optional[str] = None) -> "OrderPair":
        if quote.yes_ask is None or quote.no_ask is None:
            raise PlanningError(f"{quote.ticker}: cannot plan without both asks")
        legs = []
        for side in (Side.YES, Side.NO):
            coid = f"{quote.ticker}-{side.value}-{policy.order_count}"
            if run_id:
                coid = f"{run_id}-{coid}"
            legs.append(
                OrderIntent(
                    ticker=quote.ticker,
                    side=side,
                    count=policy.order_count,
                    limit_price=quote.ask(side),  # type: ignore[arg-type]
                    time_in_force=policy.time_in_force,
                    client_order_id=coid,
                )
            )
        return cls(yes=legs[0], no=legs[1])


def plan(quote: Quote, verdict: Verdict, policy: Policy, run_id: Optional[str] = None) -> OrderPair:
    if not verdict.qualified:
        raise PlanningError(f"{quote.ticker}: plan() called with a skip verdict ({verdict.reason})")
    return OrderPair.build(quote, policy, run_id=run_id)
