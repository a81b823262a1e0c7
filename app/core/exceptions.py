"""Domain errors for generation, purchases and persistence, plus HTTP mapping."""

from typing import Any, Optional

from fastapi import HTTPException

INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
SUBMISSION_FAILED = "SUBMISSION_FAILED"
POLLING_TIMEOUT = "POLLING_TIMEOUT"
REMOTE_ERROR = "REMOTE_ERROR"
PURCHASE_REJECTED = "PURCHASE_REJECTED"
PURCHASE_FAILED = "PURCHASE_FAILED"
PURCHASE_UNVERIFIED = "PURCHASE_UNVERIFIED"
PERSISTENCE_CORRUPT = "PERSISTENCE_CORRUPT"
NOT_SIGNED_IN = "NOT_SIGNED_IN"


class AvatarError(Exception):
    """Base error; `message` is safe to show to the user."""

    code: str = "ERROR"
    status_code: int = 400

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message()
        self.extra = extra
        super().__init__(self.message)

    def default_message(self) -> str:
        return "Something went wrong."

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class InsufficientCredits(AvatarError):
    code = INSUFFICIENT_CREDITS
    status_code = 402

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Not enough credits: this video needs {required} credits, you have {available}.",
            required=required,
            available=available,
        )


class SubmissionTransportFailure(AvatarError):
    code = SUBMISSION_FAILED
    status_code = 502

    def default_message(self) -> str:
        return "The video request could not be sent. Please try again."


class PollingTimeout(AvatarError):
    code = POLLING_TIMEOUT
    status_code = 504

    def default_message(self) -> str:
        return "Video generation took too long. Please try again."


class RemoteReportedError(AvatarError):
    code = REMOTE_ERROR
    status_code = 502

    def default_message(self) -> str:
        return "Video generation failed."


class PurchaseRejected(AvatarError):
    code = PURCHASE_REJECTED
    status_code = 403


class PurchaseTransportFailure(AvatarError):
    code = PURCHASE_FAILED
    status_code = 502

    def default_message(self) -> str:
        return "The store could not be reached. Please try again later."


class PurchaseUnverified(AvatarError):
    code = PURCHASE_UNVERIFIED
    status_code = 400

    def default_message(self) -> str:
        return "The purchase could not be verified."


class PersistenceCorrupt(AvatarError):
    """Raised by the key-value layer; callers treat it as missing state."""

    code = PERSISTENCE_CORRUPT
    status_code = 500


class NotSignedIn(AvatarError):
    code = NOT_SIGNED_IN
    status_code = 401

    def default_message(self) -> str:
        return "Please sign in first."


def to_http_exception(error: AvatarError) -> HTTPException:
    """Body shape matches the frontend alert payload: {code, message, ...}."""
    return HTTPException(status_code=error.status_code, detail=error.to_detail())
