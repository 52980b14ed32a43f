"""
batu.errors

Application error hierarchy.

Responsibilities:
- Give services and domain code a small set of typed failures.
- Carry a stable machine-readable `code` and an HTTP status for the API layer.
"""

from __future__ import annotations

from typing import Any


class BatuError(Exception):
    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BatuError):
    status_code = 422
    code = "validation_error"


class NotFoundError(BatuError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(BatuError):
    status_code = 403
    code = "permission_denied"


class ConflictError(BatuError):
    status_code = 409
    code = "conflict"


class ActionExpiredError(BatuError):
    status_code = 410
    code = "action_expired"


class QuotaExceededError(BatuError):
    status_code = 429
    code = "quota_exceeded"


class PaymentError(BatuError):
    status_code = 402
    code = "payment_error"


class ExternalServiceError(BatuError):
    status_code = 502
    code = "external_service_error"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        error_code: int | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status = status
        self.error_code = error_code

    @property
    def is_transient(self) -> bool:
        return self.status is None or self.status >= 500 or self.status == 429


class MetaApiError(ExternalServiceError):
    code = "meta_api_error"

    # Graph API codes that Meta documents as temporary / throttling.
    TRANSIENT_CODES = frozenset({1, 2, 4, 17, 341})

    @property
    def is_transient(self) -> bool:
        if self.error_code in self.TRANSIENT_CODES:
            return True
        # No status means the request never got an HTTP response (network error).
        return self.status is None or self.status >= 500

    @property
    def is_not_found(self) -> bool:
        return self.status == 404 or self.error_code == 100


class TossApiError(ExternalServiceError):
    code = "toss_api_error"


class CircuitOpenError(BatuError):
    status_code = 503
    code = "service_unavailable"


# --- Module Notes -----------------------------------------------------------
# The app factory registers one handler for `BatuError`; routers keep raising
# `HTTPException` for request-shape problems.
