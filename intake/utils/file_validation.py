"""Content-based image identification.

Combines two independent checks so that neither a harmless-looking extension
on a hostile payload nor a hostile extension on a harmless payload gets
through:

1. a generic content sniff (``filetype``, backed by the catalog's own
   signatures) over the first 512 bytes, and
2. an explicit magic-byte check for the format the sniff settled on.

HEIC is the one exception to the generic sniff: it is frequently reported as
opaque binary, so for a declared ``.heic`` file the magic-byte check alone
decides.
"""

from __future__ import annotations

from dataclasses import dataclass

import filetype

from intake.utils.image_formats import (
    CATALOG,
    OCTET_STREAM,
    ImageFormat,
    extension_of,
    format_for_extension,
    format_for_mime,
    spec_for,
)

SNIFF_LEN = 512


@dataclass(frozen=True)
class FormatVerdict:
    """Outcome of every format check for one buffer and declared filename."""

    sniffed_mime: str
    claimed: ImageFormat | None
    format: ImageFormat | None
    extension_allowed: bool
    content_type_allowed: bool
    extension_matches: bool
    signature_match: bool
    heic_bypass: bool = False

    @property
    def accepted(self) -> bool:
        return (
            self.extension_allowed
            and self.content_type_allowed
            and self.extension_matches
            and self.signature_match
        )


def detect_format(data: bytes) -> str:
    """Best-guess MIME type from the leading bytes, ignoring any claims.

    ``filetype`` answers first. When it recognises nothing, or reports a type
    outside the catalog, the catalog's own signatures get a say: ``filetype``
    reports APNG as ``image/apng`` and only knows WebP with a ``VP8*`` chunk
    right after the header.

    Returns ``application/octet-stream`` when nothing is recognised.
    """
    head = bytes(data[:SNIFF_LEN])
    if not head:
        return OCTET_STREAM
    kind = filetype.guess(head)
    if kind is not None and format_for_mime(kind.mime) is not None:
        return kind.mime
    for spec in CATALOG.values():
        if spec.matches(head):
            return spec.mime
    return kind.mime if kind is not None else OCTET_STREAM


def verify_signature(data: bytes, claimed_type: ImageFormat | str) -> bool:
    """Check that ``data`` starts with the magic bytes of ``claimed_type``.

    Args:
        data: Raw file bytes (a prefix is enough).
        claimed_type: An ``ImageFormat`` or its MIME string.

    Returns:
        True if the signature matches; False for unknown types or short buffers.
    """
    if not data:
        return False
    if isinstance(claimed_type, ImageFormat):
        image_format: ImageFormat | None = claimed_type
    else:
        image_format = format_for_mime(claimed_type)
    if image_format is None:
        return False
    return spec_for(image_format).matches(data)


def sniff(data: bytes, filename: str | None) -> FormatVerdict:
    """Run every format check against ``data`` as declared by ``filename``."""
    claimed = format_for_extension(extension_of(filename))
    sniffed_mime = detect_format(data)
    detected = format_for_mime(sniffed_mime)

    heic_bypass = detected is None and claimed is ImageFormat.HEIC
    checked = ImageFormat.HEIC if heic_bypass else detected

    return FormatVerdict(
        sniffed_mime=sniffed_mime,
        claimed=claimed,
        format=checked,
        extension_allowed=claimed is not None,
        content_type_allowed=checked is not None,
        extension_matches=checked is not None and checked is claimed,
        signature_match=checked is not None and verify_signature(data, checked),
        heic_bypass=heic_bypass,
    )
