"""Error taxonomy shared by services and routes.

Every error carries a stable ``code`` (validation, not_found, conflict,
storage, forbidden) next to a user-facing message. They subclass
``HTTPException`` so FastAPI renders them without extra handlers:

    {"detail": {"code": "conflict", "message": "Slot unavailable"}}
"""
import logging
from typing import List, Optional

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

GENERIC_STORAGE_MESSAGE = "The request could not be saved. Please try again later."


class HMSError(HTTPException):
    code = "error"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra):
        self.message = message
        detail = {"code": self.code, "message": message}
        detail.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(status_code=self.status_code_default, detail=detail)


class ValidationFailed(HMSError):
    code = "validation"
    status_code_default = 422

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message, fields=self.fields or None)


class NotFound(HMSError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND


class Conflict(HMSError):
    code = "conflict"
    status_code_default = status.HTTP_409_CONFLICT


class Forbidden(HMSError):
    code = "forbidden"
    status_code_default = status.HTTP_403_FORBIDDEN


class StorageFailure(HMSError):
    code = "storage"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = GENERIC_STORAGE_MESSAGE):
        super().__init__(message)


async def rollback_and_raise(db, exc: Exception, context: str) -> None:
    """Roll back ``db``, log ``exc`` with ``context`` and raise a generic StorageFailure."""
    await db.rollback()
    logger.error(f"Storage failure while {context}: {type(exc).__name__} - {exc}", exc_info=True)
    raise StorageFailure() from exc
