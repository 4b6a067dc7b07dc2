from __future__ import annotations

from typing import Any


class KalshiBotError(Exception):
    """Base class for errors raised by kalshibot."""


class ConfigError(KalshiBotError):
    pass


class PolicyError(ConfigError):
    """Policy thresholds violate an invariant; evaluation must not start."""


class PlanningError(KalshiBotError, ValueError):
    pass


class ExchangeTransportError(KalshiBotError):
    """The exchange could not be reached or refused our credentials.

    Distinct from an order-level rejection: a transport error aborts the run.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ExchangeInactive(KalshiBotError):
    pass


class SlackError(KalshiBotError):
    pass


class RunAborted(KalshiBotError):
    """Raised by the run driver after an unrecoverable error; carries the partial summary."""

    def __init__(self, message: str, summary: Any, cause: BaseException | None = None):
        super().__init__(message)
        self.summary = summary
        self.cause = cause
