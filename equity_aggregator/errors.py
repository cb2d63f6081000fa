"""Error taxonomy for the aggregation engine.

Exception Hierarchy:
    EquityAggregatorError (base)
    ├── ProviderError - One adapter call failed (network, timeout, HTTP status)
    │   └── SessionRejectedError - Exchange endpoint rejected the session (401/403/429)
    ├── ParseError - Expected markup structure not found
    └── UnusableQuoteError - Quote has no positive price

None of these escape the orchestrator or the financial extractor; they are
folded into provider traces. ``AllProvidersExhausted`` is deliberately not an
exception: it is the terminal per-symbol record that becomes a degraded quote.
"""

from dataclasses import dataclass, field
from typing import Any

SHORT_ERROR_LIMIT = 180
SESSION_REJECTED_STATUSES = frozenset({401, 403, 429})


class EquityAggregatorError(Exception):
    """Base exception for all aggregation errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        recoverable: Whether the caller can continue with another source.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ProviderError(EquityAggregatorError):
    """A provider call failed for the whole batch or one symbol.

    Attributes:
        provider: Registry name of the failing provider.
        status: HTTP status code, if the failure came from a response.
        code: Short machine-readable failure code.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.provider = provider
        self.status = status
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"provider": self.provider, "status": self.status, "code": self.code})
        return base


class SessionRejectedError(ProviderError):
    """Exchange endpoint rejected the current session cookie."""


class ParseError(EquityAggregatorError):
    """Expected page structure (table, section, field) was not found."""


class UnusableQuoteError(EquityAggregatorError):
    """A provider answered, but without a usable (positive) price."""

    def __init__(self, symbol: str, reason: str = "empty-last-price") -> None:
        super().__init__(f"{symbol}: {reason}", details={"symbol": symbol})
        self.symbol = symbol
        self.reason = reason


@dataclass(frozen=True)
class AllProvidersExhausted:
    """Terminal outcome for a symbol no provider could resolve.

    Attributes:
        symbol: Canonical symbol.
        reason: Short reason recorded in the degraded quote's trace.
        attempts: Provider trace accumulated while resolving.
    """

    symbol: str
    reason: str = "all providers failed"
    attempts: tuple[str, ...] = field(default_factory=tuple)


def short_error(error: BaseException | None) -> str:
    """Compact ``code:message`` rendering used inside provider traces."""
    if error is None:
        return "unknown"

    code: Any = None
    if isinstance(error, ProviderError):
        code = error.code or error.status
    elif isinstance(error, EquityAggregatorError):
        code = error.details.get("code")
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return f"{code or 'ERR'}:{message}"[:SHORT_ERROR_LIMIT]
