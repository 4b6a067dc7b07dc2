from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from kalshibot.core.errors import PolicyError
from kalshibot.core.models import Quote
from kalshibot.core.pricing import PRICE_MAX, PRICE_MIN, format_price, to_decimal


class TimeInForce(str, Enum):
    FILL_OR_KILL = "fill_or_kill"
    GOOD_TILL_CANCELED = "good_till_canceled"
    IMMEDIATE_OR_CANCEL = "immediate_or_cancel"

    @classmethod
    def parse(cls, raw: str) -> "TimeInForce":
        v = (raw or "").strip().lower().replace("-", "_")
        aliases = {"fok": cls.FILL_OR_KILL, "gtc": cls.GOOD_TILL_CANCELED, "ioc": cls.IMMEDIATE_OR_CANCEL}
        if v in aliases:
            return aliases[v]
        try:
            return cls(v)
        except ValueError:
            raise PolicyError(f"unknown time_in_force: {raw!r}") from None


class Reason(str, Enum):
    # qualify
    FAST_CLOSE_BAND = "fast_close_band"
    COMBINED_PRICE = "combined_price"
    # skip
    NO_QUOTE = "no_quote"
    ALREADY_CLOSED = "already_closed"
    COMBINED_PRICE_TOO_HIGH = "combined_price_too_high"
    OUTSIDE_FAST_CLOSE_WINDOW = "outside_fast_close_window"

    def __str__(self) -> str:
        return self.value


QUALIFY_REASONS = frozenset({Reason.FAST_CLOSE_BAND, Reason.COMBINED_PRICE})
SKIP_REASONS = frozenset(set(Reason) - QUALIFY_REASONS)


def _threshold(raw, name: str) -> Decimal:
    """Coerce a policy threshold to Decimal; floats go through str() so 0.97 stays 0.97."""
    if isinstance(raw, bool):
        raise PolicyError(f"{name}: not a decimal number: {raw!r}")
    try:
        return to_decimal(raw, name)
    except ValueError as e:
        raise PolicyError(str(e)) from e


@dataclass(frozen=True)
class PriceBand:
    low: Decimal
    high: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "low", _threshold(self.low, "fast_close_band.low"))
        object.__setattr__(self, "high", _threshold(self.high, "fast_close_band.high"))

    def contains(self, price: Decimal) -> bool:
        return self.low <= price <= self.high

    def __str__(self) -> str:
        return f"{format_price(self.low)}-{format_price(self.high)}"


@dataclass(frozen=True)
class Policy:
    combined_max_price: Decimal = Decimal("1.00")
    fast_close_window_seconds: int = 60
    fast_close_band: PriceBand = field(default_factory=lambda: PriceBand(Decimal("0.90"), Decimal("0.97")))
    order_count: int = 1
    time_in_force: TimeInForce = TimeInForce.FILL_OR_KILL

    def __post_init__(self) -> None:
        object.__setattr__(self, "combined_max_price", _threshold(self.combined_max_price, "combined_max_price"))
        self.validate()

    def validate(self) -> None:
        if not isinstance(self.combined_max_price, Decimal):
            raise PolicyError(f"combined_max_price must be a Decimal, got {self.combined_max_price!r}")
        band = self.fast_close_band
        if not isinstance(band, PriceBand):
            raise PolicyError(f"fast_close_band must be a PriceBand, got {band!r}")
        if band.low > band.high:
            raise PolicyError(f"fast_close_band is inverted: low {band.low} > high {band.high}")
        if band.low < PRICE_MIN or band.high > PRICE_MAX:
            raise PolicyError(f"fast_close_band must lie within [0, 1], got {band}")
        if self.combined_max_price <= 0:
            raise PolicyError(f"combined_max_price must be > 0, got {self.combined_max_price}")
        if self.fast_close_window_seconds < 0:
            raise PolicyError(f"fast_close_window_seconds must be >= 0, got {self.fast_close_window_seconds}")
        if self.order_count < 1:
            raise PolicyError(f"order_count must be a positive integer, got {self.order_count}")
        if not isinstance(self.time_in_force, TimeInForce):
            raise PolicyError(f"time_in_force must be a TimeInForce, got {self.time_in_force!r}")


@dataclass(frozen=True)
class Verdict:
    qualified: bool
    reason: Reason
    detail: str = ""

    @classmethod
    def qualify(cls, reason: Reason, detail: str = "") -> "Verdict":
        if reason not in QUALIFY_REASONS:
            raise ValueError(f"{reason} is not a qualification reason")
        return cls(True, reason, detail)

    @classmethod
    def skip(cls, reason: Reason, detail: str = "") -> "Verdict":
        if reason not in SKIP_REASONS:
            raise ValueError(f"{reason} is not a skip reason")
        return cls(False, reason, detail)

    @property
    def label(self) -> str:
        return ("QUALIFY" if self.qualified else "skip") + f": {self.detail or self.reason}"


def evaluate(quote: Quote, policy: Policy) -> Verdict:
    """Classify one quote against the policy.

    Precedence: closed market, missing ask, fast-close band, combined price.
    All comparisons are Decimal; an ask sum equal to the ceiling does not qualify.
    """
    ttl = quote.seconds_to_close
    if ttl < 0:
        return Verdict.skip(Reason.ALREADY_CLOSED, f"market already closed ({ttl}s)")

    yes, no = quote.yes_ask, quote.no_ask
    if yes is None or no is None:
        return Verdict.skip(Reason.NO_QUOTE, "missing or invalid YES/NO ask")

    band = policy.fast_close_band
    in_band = band.contains(yes) or band.contains(no)
    if in_band and ttl < policy.fast_close_window_seconds:
        return Verdict.qualify(
            Reason.FAST_CLOSE_BAND,
            f"ttl {ttl}s with YES {format_price(yes)} / NO {format_price(no)} in {band} band",
        )

    combined = yes + no
    if combined < policy.combined_max_price:
        return Verdict.qualify(
            Reason.COMBINED_PRICE,
            f"combined {format_price(combined)} < {format_price(policy.combined_max_price)}, seconds_to_close={ttl}",
        )

    detail = f"combined {format_price(combined)} >= threshold {format_price(policy.combined_max_price)}"
    if in_band:
        return Verdict.skip(
            Reason.OUTSIDE_FAST_CLOSE_WINDOW,
            f"{detail}; band price but ttl {ttl}s >= {policy.fast_close_window_seconds}s window",
        )
    return Verdict.skip(Reason.COMBINED_PRICE_TOO_HIGH, detail)
