from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from kalshibot.core.models import Market


logger = logging.getLogger(__name__)


def _cents_to_dollars(v: Any) -> Optional[str]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return str((Decimal(str(v)) / 100).quantize(Decimal("0.0001")))
    except (InvalidOperation, ValueError):
        return None


class MarketSchema(BaseModel):
    ticker: str
    title: str = ""
    subtitle: Optional[str] = None
    event_ticker: Optional[str] = None
    status: Optional[str] = None
    close_time: datetime
    yes_ask_dollars: Optional[str] = None
    no_ask_dollars: Optional[str] = None

    @field_validator("yes_ask_dollars", "no_ask_dollars", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # keep the exchange's textual price; numbers are accepted but never floated
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return None

    @model_validator(mode="before")
    @classmethod
    def _legacy_cent_fields(cls, data: Any) -> Any:
        # older payloads only carry integer-cent yes_ask/no_ask
        if not isinstance(data, dict):
            return data
        out = dict(data)
        for side in ("yes", "no"):
            key = f"{side}_ask_dollars"
            if out.get(key) is None and out.get(f"{side}_ask") is not None:
                out[key] = _cents_to_dollars(out.get(f"{side}_ask"))
        return out

    def to_market(self) -> Market:
        return Market(
            ticker=self.ticker,
            title=self.title,
            close_time=self.close_time,
            subtitle=self.subtitle,
            event_ticker=self.event_ticker,
            status=self.status,
            yes_ask_dollars=self.yes_ask_dollars,
            no_ask_dollars=self.no_ask_dollars,
        )


def parse_markets(raw: List[Dict[str, Any]], event_ticker: Optional[str] = None) -> List[Market]:
    """Validate market records one by one; a malformed record is logged and dropped."""
    out: List[Market] = []
    for item in raw:
        try:
            m = MarketSchema.model_validate(item).to_market()
        except ValidationError as e:
            logger.warning("dropping malformed market %s: %s", item.get("ticker") if isinstance(item, dict) else item, e.errors()[0].get("msg"))
            continue
        if m.event_ticker is None:
            m.event_ticker = event_ticker
        out.append(m)
    return out


class MarketsPage(BaseModel):
    markets: List[Dict[str, Any]] = Field(default_factory=list)
    cursor: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def next(self) -> Optional[str]:
        return self.cursor or self.next_cursor or None


class EventSchema(BaseModel):
    event_ticker: str
    title: str = ""
    subtitle: Optional[str] = None
    category: Optional[str] = None
    markets: List[Dict[str, Any]] = Field(default_factory=list)


class EventsPage(BaseModel):
    events: List[EventSchema] = Field(default_factory=list)
    cursor: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def next(self) -> Optional[str]:
        return self.cursor or self.next_cursor or None


class SeriesSchema(BaseModel):
    ticker: str
    title: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[str] = None


class SeriesPage(BaseModel):
    series: Optional[List[SeriesSchema]] = None
    market_series: Optional[List[SeriesSchema]] = None
    cursor: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def items(self) -> List[SeriesSchema]:
        if self.series is not None:
            return self.series
        return self.market_series or []

    @property
    def next(self) -> Optional[str]:
        return self.cursor or self.next_cursor or None


class ExchangeStatus(BaseModel):
    exchange_active: bool
    trading_active: bool
    exchange_estimated_resume_time: Optional[datetime] = None


class CreatedOrder(BaseModel):
    order_id: str
    status: Optional[str] = None


class CreateOrderResponse(BaseModel):
    order: Optional[CreatedOrder] = None
    order_id: Optional[str] = None
