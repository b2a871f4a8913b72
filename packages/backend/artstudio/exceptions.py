from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4


def new_trace_id() -> str:
    return uuid4().hex


class TrackedError(Exception):
    def __init__(self, message: str, *, error_type: str, trace_id: str | None = None) -> None:
        self.error_type = error_type
        self.trace_id = trace_id or new_trace_id()
        super().__init__(message)

    def with_trace(self) -> str:
        return f"{self.args[0]} (trace_id={self.trace_id})"

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self.args[0]), "error_type": self.error_type, "trace_id": self.trace_id}


class BridgeNotConnectedError(TrackedError):
    def __init__(self, message: str = "The storefront add-to-cart bridge is not connected.", *, trace_id: str | None = None) -> None:
        super().__init__(message, error_type="bridge_not_connected", trace_id=trace_id)


class BridgeTimeoutError(TrackedError):
    def __init__(self, message: str, *, correlation_id: str | None = None, trace_id: str | None = None) -> None:
        self.correlation_id = correlation_id
        super().__init__(message, error_type="bridge_timeout", trace_id=trace_id)


class PendingRequestEvictedError(TrackedError):
    def __init__(self, message: str, *, correlation_id: str | None = None, trace_id: str | None = None) -> None:
        self.correlation_id = correlation_id
        super().__init__(message, error_type="pending_evicted", trace_id=trace_id)


class InvalidReferenceError(TrackedError):
    def __init__(self, message: str, *, reference: str | None = None, trace_id: str | None = None) -> None:
        self.reference = reference
        super().__init__(message, error_type="invalid_reference", trace_id=trace_id)


class ResolutionExhaustedError(TrackedError):
    def __init__(self, message: str, *, merchant_id: str, trace_id: str | None = None) -> None:
        self.merchant_id = merchant_id
        super().__init__(message, error_type="no_configurations", trace_id=trace_id)


class CartMutationError(TrackedError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, trace_id: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, error_type="cart_error", trace_id=trace_id)


class FulfillmentNotConfiguredError(TrackedError):
    def __init__(self, message: str = "Fulfillment credentials are not configured for this shop", *, trace_id: str | None = None) -> None:
        super().__init__(message, error_type="fulfillment_not_configured", trace_id=trace_id)


class GenerationError(TrackedError):
    def __init__(self, message: str, *, error_type: str = "generation_failed", trace_id: str | None = None) -> None:
        super().__init__(message, error_type=error_type, trace_id=trace_id)


class RateLimitedError(TrackedError):
    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", *, retry_after: int, trace_id: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message, error_type="rate_limited", trace_id=trace_id)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after
        return data


class UpstreamError(Exception):
    """A single failed call to the fulfillment provider."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, retryable: bool = True) -> None:
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class UpstreamRetryExhaustedError(TrackedError):
    def __init__(
        self,
        message: str,
        *,
        step: str,
        attempts: int,
        status_code: Optional[int] = None,
        trace_id: str | None = None,
    ) -> None:
        self.step = step
        self.attempts = attempts
        self.status_code = status_code
        super().__init__(message, error_type="upstream_retry_exhausted", trace_id=trace_id)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"step": self.step, "attempts": self.attempts, "status_code": self.status_code})
        return data


__all__ = [
    "new_trace_id",
    "TrackedError",
    "BridgeNotConnectedError",
    "BridgeTimeoutError",
    "PendingRequestEvictedError",
    "InvalidReferenceError",
    "ResolutionExhaustedError",
    "CartMutationError",
    "FulfillmentNotConfiguredError",
    "GenerationError",
    "RateLimitedError",
    "UpstreamError",
    "UpstreamRetryExhaustedError",
]
