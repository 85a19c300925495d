import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional

FieldErrors = Dict[str, List[str]]


class ErrorKind(str, Enum):
    format = "format"
    validation = "validation"
    request = "request"
    timeout = "timeout"
    not_found = "not_found"
    transport = "transport"
    cancelled = "cancelled"
    unsupported_chain = "unsupported_chain"


class VaultumError(Exception):
    """Every failure the SDK surfaces; match on `kind` or on the subclass"""

    kind: ErrorKind = ErrorKind.request

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[FieldErrors] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r}, "
            f"status_code={self.status_code!r})"
        )


class OperationIdFormatError(VaultumError):
    kind = ErrorKind.format


class VaultumValidationError(VaultumError):
    kind = ErrorKind.validation


class RequestFailedError(VaultumError):
    kind = ErrorKind.request


class VaultumTimeoutError(VaultumError, TimeoutError):
    kind = ErrorKind.timeout


class OperationNotFoundError(VaultumError):
    kind = ErrorKind.not_found


class TransportError(VaultumError):
    kind = ErrorKind.transport


class PollCancelledError(VaultumError):
    kind = ErrorKind.cancelled


class UnsupportedChainError(VaultumError):
    kind = ErrorKind.unsupported_chain


UNKNOWN_ERROR_MESSAGE = "Unknown error occurred"


def error_from_response(status: int, body: Any) -> VaultumError:
    """Translate a non-2xx response body into the matching VaultumError"""
    payload = body if isinstance(body, dict) else {}

    if status == 422:
        return VaultumValidationError(
            payload.get("message") or "Validation failed",
            status,
            payload.get("errors"),
        )

    message = payload.get("error") or f"Request failed with status {status}"
    if status == 404:
        return OperationNotFoundError(message, status)
    return RequestFailedError(message, status)


def normalize_exception(exc: BaseException) -> VaultumError:
    """Wrap anything raised below the client into the VaultumError family"""
    if isinstance(exc, VaultumError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return VaultumTimeoutError("Request timeout")
    return TransportError(str(exc) or UNKNOWN_ERROR_MESSAGE)
