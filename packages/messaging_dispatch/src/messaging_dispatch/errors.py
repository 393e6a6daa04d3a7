"""
Dispatch Errors

Typed errors raised by the dispatch core. Every error has a stable ``code``
used by callers (HTTP app, CLI) to map it to an outcome.
"""

from typing import Any


class DispatchError(Exception):
    """Base class for all dispatch core errors."""

    code = "internal"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error for wire responses."""
        return {"code": self.code, "message": self.message, **self.details}


class NotFoundError(DispatchError):
    """Entity absent or not owned by the caller's company."""

    code = "not_found"


class InvalidArgumentError(DispatchError):
    """Missing or malformed required field."""

    code = "invalid_argument"


class InvalidEncodingError(DispatchError):
    """Payload could not be decoded to bytes."""

    code = "invalid_encoding"


class PayloadTooLargeError(DispatchError):
    """Decoded payload exceeds the size ceiling."""

    code = "payload_too_large"

    def __init__(self, received_size: int, max_size: int):
        super().__init__(
            f"Payload too large: {received_size} bytes (max {max_size})",
            details={"received_size": received_size, "max_size": max_size},
        )
        self.received_size = received_size
        self.max_size = max_size


class EndpointUnavailableError(DispatchError):
    """Channel instance is not usable (not connected or misconfigured)."""

    code = "endpoint_unavailable"

    def __init__(self, message: str, instance_status: str | None = None):
        super().__init__(message, details={"instance_status": instance_status})
        self.instance_status = instance_status


class ProviderError(DispatchError):
    """Error from the channel provider."""

    code = "provider_error"
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code
        self.provider_details = details or {}
        # Set by the orchestrator once the failed attempt has been recorded
        self.message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retryable"] = self.retryable
        if self.message_id:
            data["message_id"] = self.message_id
        return data


class ProviderUnreachableError(ProviderError):
    """Network-level failure talking to the provider (retry-eligible)."""

    code = "provider_unreachable"
    retryable = True


class ProviderRejectedError(ProviderError):
    """Provider refused the request (terminal)."""

    code = "provider_rejected"


class InsufficientBalanceError(DispatchError):
    """Balance does not cover the requested consume."""

    code = "insufficient_balance"

    def __init__(self, current_balance: int, required: int):
        super().__init__(
            f"Insufficient balance: {current_balance} credits, {required} required",
            details={"current_balance": current_balance, "required": required},
        )
        self.current_balance = current_balance
        self.required = required


class StorageError(DispatchError):
    """Blob storage operation failed."""

    code = "storage_error"


class LedgerConflictError(DispatchError):
    """Lost a race on an atomic ledger update; retry the whole operation."""

    code = "ledger_conflict"


class DuplicateMessageError(DispatchError):
    """Provider message id already recorded for the conversation."""

    code = "duplicate_message"


class InternalError(DispatchError):
    """Unexpected failure."""

    code = "internal"
