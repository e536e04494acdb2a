# driveflow/core/exceptions.py
"""
Domain exceptions for the booking workflow.

Services raise these instead of HTTPException so the same rules can be
exercised without a request. main.py maps each class to a JSON response
using ``status_code`` and ``error_code``.
"""
from typing import Any, Dict, Optional


class DriveFlowError(Exception):
    """Base class for every error the workflow layer reports to callers."""

    status_code: int = 400
    error_code: str = "driveflow_error"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidTransitionError(DriveFlowError):
    """Target status is not reachable from the booking's current status."""
    status_code = 400
    error_code = "invalid_transition"


class PreconditionFailedError(DriveFlowError):
    """Transition is legal but the booking is missing required data (bill, photos, OTP)."""
    status_code = 409
    error_code = "precondition_failed"


class ValidationFailedError(DriveFlowError):
    status_code = 422
    error_code = "validation_failed"


class NotFoundError(DriveFlowError):
    status_code = 404
    error_code = "not_found"


class PermissionDeniedError(DriveFlowError):
    status_code = 403
    error_code = "forbidden"


class AlreadyResolvedError(DriveFlowError):
    """Approval request is no longer Pending."""
    status_code = 409
    error_code = "already_resolved"


class OtpRejectedError(DriveFlowError):
    status_code = 400
    error_code = "otp_rejected"


class TooManyAttemptsError(DriveFlowError):
    status_code = 429
    error_code = "too_many_attempts"


class UpstreamError(DriveFlowError):
    """Storage or file backend unavailable. Safe for the client to retry."""
    status_code = 503
    error_code = "upstream_unavailable"
    retryable = True
