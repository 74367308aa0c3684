"""Exception hierarchy for the upload intake service.

Every error raised by the validation and storage pipeline carries an
``UploadErrorKind`` so callers can branch on the failure without parsing
messages. Two families exist:

- ``UploadRejectedError``: the upload itself is unacceptable (size, extension,
  content). Safe to show to the client verbatim.
- ``UploadStorageError``: reading or persisting bytes failed on our side. The
  message is logged in full but only a generic failure leaves the API.
"""

from __future__ import annotations

import enum
from typing import Any


class UploadErrorKind(str, enum.Enum):
    EMPTY = "EMPTY"
    TOO_LARGE = "TOO_LARGE"
    EXTENSION_NOT_ALLOWED = "EXTENSION_NOT_ALLOWED"
    CONTENT_TYPE_NOT_ALLOWED = "CONTENT_TYPE_NOT_ALLOWED"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    INVALID_CATEGORY = "INVALID_CATEGORY"
    IO_ERROR = "IO_ERROR"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    WRITE_FAILED = "WRITE_FAILED"
    POST_WRITE_VALIDATION_FAILED = "POST_WRITE_VALIDATION_FAILED"
    DELETE_FAILED = "DELETE_FAILED"

    @property
    def is_rejection(self) -> bool:
        """True for failures caused by the upload rather than by our storage."""
        return self not in _INTERNAL_KINDS


_INTERNAL_KINDS = frozenset(
    {
        UploadErrorKind.IO_ERROR,
        UploadErrorKind.STORAGE_UNAVAILABLE,
        UploadErrorKind.WRITE_FAILED,
        UploadErrorKind.POST_WRITE_VALIDATION_FAILED,
        UploadErrorKind.DELETE_FAILED,
    }
)


class IntakeException(Exception):
    """Base exception for all intake service errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "details": self.details,
            }
        }


# ============================================================================
# UPLOAD ERRORS
# ============================================================================

class UploadError(IntakeException):
    """Base class for validation and storage pipeline errors."""

    def __init__(
        self,
        kind: UploadErrorKind,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, code=kind.value, status_code=status_code, details=details)
        self.kind = kind


class UploadRejectedError(UploadError):
    """The upload failed validation; nothing was written."""

    def __init__(self, kind: UploadErrorKind, message: str, details: dict[str, Any] | None = None):
        if not kind.is_rejection:
            raise ValueError(f"{kind.value} is a storage failure, not a rejection")
        status_code = 413 if kind is UploadErrorKind.TOO_LARGE else 400
        super().__init__(kind, message, status_code=status_code, details=details)


class UploadStorageError(UploadError):
    """Reading, writing, re-verifying or deleting bytes failed."""

    def __init__(self, kind: UploadErrorKind, message: str, details: dict[str, Any] | None = None):
        if kind.is_rejection:
            raise ValueError(f"{kind.value} is a rejection, not a storage failure")
        super().__init__(kind, message, status_code=500, details=details)


# ============================================================================
# RECORD ERRORS
# ============================================================================

class PostNotFoundError(IntakeException):
    """Post does not exist in the requested category."""

    def __init__(self, post_id: str, category: str):
        super().__init__(
            message=f"Post {post_id} not found in {category}",
            code="PST404",
            status_code=404,
            details={"post_id": post_id, "category": category},
        )


class ConflictingImageUpdateError(IntakeException):
    """An update asked to both replace and remove the post image."""

    def __init__(self):
        super().__init__(
            message="Send either a new image or delete_image, not both",
            code="PST400",
            status_code=400,
            details={"fields": ["image", "delete_image"]},
        )
