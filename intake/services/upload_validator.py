"""Accept/reject decisions for uploaded images.

``validate`` works on a seekable stream and only peeks at its head;
``validate_buffer`` works on a fully read payload; ``read_validated`` does
both and is what the storage layer uses to re-check bytes after they hit the
disk.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO

from intake.core.exceptions import UploadErrorKind, UploadRejectedError, UploadStorageError
from intake.utils.file_validation import SNIFF_LEN, FormatVerdict, sniff
from intake.utils.image_formats import ALLOWED_EXTENSIONS, MAX_IMAGE_SIZE, extension_of

logger = logging.getLogger(__name__)

_ALLOWED_EXTENSIONS_TEXT = ", ".join(sorted(ALLOWED_EXTENSIONS))


@dataclass(frozen=True)
class UploadCandidate:
    """One incoming file as declared by the client."""

    stream: BinaryIO
    filename: str
    declared_size: int
    category: str = ""

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        filename: str,
        declared_size: int | None = None,
        category: str = "",
    ) -> UploadCandidate:
        size = len(data) if declared_size is None else declared_size
        return cls(stream=io.BytesIO(data), filename=filename, declared_size=size, category=category)


def _check_declared_size(declared_size: int) -> None:
    if declared_size <= 0:
        raise UploadRejectedError(UploadErrorKind.EMPTY, "File is empty")
    if declared_size > MAX_IMAGE_SIZE:
        raise UploadRejectedError(
            UploadErrorKind.TOO_LARGE,
            "File size exceeds maximum allowed size of 5MB",
            details={"declared_size": declared_size, "max_size": MAX_IMAGE_SIZE},
        )


def _check_extension(filename: str) -> None:
    ext = extension_of(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadRejectedError(
            UploadErrorKind.EXTENSION_NOT_ALLOWED,
            f"File extension {ext or '(none)'} is not allowed. Allowed: {_ALLOWED_EXTENSIONS_TEXT}",
            details={"extension": ext},
        )


def _peek(stream: BinaryIO, size: int = SNIFF_LEN) -> bytes:
    """Read up to ``size`` bytes and put the stream back where it was."""
    try:
        if not stream.seekable():
            raise UploadStorageError(UploadErrorKind.IO_ERROR, "Upload stream is not seekable")
        position = stream.tell()
        head = stream.read(size)
        stream.seek(position)
    except (OSError, ValueError) as exc:
        raise UploadStorageError(UploadErrorKind.IO_ERROR, f"Failed to read upload: {exc}") from exc
    return head or b""


def _raise_for_verdict(verdict: FormatVerdict) -> None:
    details = {
        "sniffed_content_type": verdict.sniffed_mime,
        "claimed_format": verdict.claimed.value if verdict.claimed else None,
    }
    if not verdict.extension_allowed:
        raise UploadRejectedError(
            UploadErrorKind.EXTENSION_NOT_ALLOWED,
            f"File extension is not allowed. Allowed: {_ALLOWED_EXTENSIONS_TEXT}",
            details=details,
        )
    if not verdict.content_type_allowed:
        raise UploadRejectedError(
            UploadErrorKind.CONTENT_TYPE_NOT_ALLOWED,
            f"File content type {verdict.sniffed_mime} is not allowed. "
            "Only JPEG, PNG, HEIC, and WebP images are allowed",
            details=details,
        )
    if not (verdict.signature_match and verdict.extension_matches):
        raise UploadRejectedError(
            UploadErrorKind.SIGNATURE_MISMATCH,
            "File content does not match its extension. Possible file manipulation detected",
            details=details,
        )


def validate(candidate: UploadCandidate) -> FormatVerdict:
    """Validate an upload from its declared size, name, and first 512 bytes.

    The stream position is restored afterwards so the caller can copy the
    full payload.

    Raises:
        UploadRejectedError: the upload is not an acceptable image.
        UploadStorageError: the stream could not be read (``IO_ERROR``).
    """
    _check_declared_size(candidate.declared_size)
    _check_extension(candidate.filename)
    head = _peek(candidate.stream)
    verdict = sniff(head, candidate.filename)
    _raise_for_verdict(verdict)
    return verdict


def validate_buffer(data: bytes, filename: str, declared_size: int | None = None) -> FormatVerdict:
    """Validate a fully read payload of any size."""
    if not data:
        raise UploadRejectedError(UploadErrorKind.EMPTY, "Empty file buffer")
    if declared_size is not None and len(data) != declared_size:
        raise UploadRejectedError(
            UploadErrorKind.SIZE_MISMATCH,
            "File size mismatch",
            details={"declared_size": declared_size, "actual_size": len(data)},
        )
    _check_extension(filename)
    verdict = sniff(data, filename)
    _raise_for_verdict(verdict)
    return verdict


def read_validated(candidate: UploadCandidate) -> tuple[bytes, FormatVerdict]:
    """Validate, read the whole stream, and validate the bytes actually read."""
    validate(candidate)
    try:
        data = candidate.stream.read()
    except (OSError, ValueError) as exc:
        raise UploadStorageError(UploadErrorKind.IO_ERROR, f"Failed to read upload: {exc}") from exc
    if len(data) != candidate.declared_size:
        raise UploadRejectedError(
            UploadErrorKind.SIZE_MISMATCH,
            "File size mismatch",
            details={"declared_size": candidate.declared_size, "actual_size": len(data)},
        )
    return data, validate_buffer(data, candidate.filename, candidate.declared_size)
