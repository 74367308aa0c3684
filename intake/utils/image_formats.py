"""Catalog of the image formats the intake pipeline accepts.

Each entry binds a format to its allowed file extensions, the single MIME
type a content sniff must report for it, and the byte signatures that prove
the bytes really are that format. The set is closed: supporting a new format
means adding an ``ImageFormat`` member *and* a catalog entry, otherwise this
module refuses to import.

Reference: https://en.wikipedia.org/wiki/List_of_file_signatures
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from types import MappingProxyType

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MiB
OCTET_STREAM = "application/octet-stream"


class ImageFormat(str, enum.Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    HEIC = "heic"


@dataclass(frozen=True)
class Signature:
    """Bytes expected at ``offset``; any one of ``options`` satisfies it."""

    offset: int
    options: tuple[bytes, ...]

    def matches(self, data: bytes) -> bool:
        return any(data[self.offset:self.offset + len(opt)] == opt for opt in self.options)


@dataclass(frozen=True)
class FormatSpec:
    format: ImageFormat
    mime: str
    extensions: frozenset[str]
    signatures: tuple[Signature, ...]

    def matches(self, data: bytes) -> bool:
        return all(sig.matches(data) for sig in self.signatures)


_SPECS = (
    FormatSpec(
        format=ImageFormat.JPEG,
        mime="image/jpeg",
        extensions=frozenset({".jpg", ".jpeg"}),
        signatures=(Signature(0, (b"\xff\xd8\xff",)),),
    ),
    FormatSpec(
        format=ImageFormat.PNG,
        mime="image/png",
        extensions=frozenset({".png"}),
        signatures=(Signature(0, (b"\x89PNG",)),),
    ),
    # RIFF container with a WEBP fourcc at offset 8
    FormatSpec(
        format=ImageFormat.WEBP,
        mime="image/webp",
        extensions=frozenset({".webp"}),
        signatures=(Signature(0, (b"RIFF",)), Signature(8, (b"WEBP",))),
    ),
    # ISO-BMFF "ftyp" box with a HEIC-family major brand
    FormatSpec(
        format=ImageFormat.HEIC,
        mime="image/heic",
        extensions=frozenset({".heic"}),
        signatures=(Signature(4, (b"ftyp",)), Signature(8, (b"heic", b"mif1"))),
    ),
)

CATALOG: MappingProxyType[ImageFormat, FormatSpec] = MappingProxyType({spec.format: spec for spec in _SPECS})

_missing = set(ImageFormat) - set(CATALOG)
if _missing:
    raise RuntimeError(f"Image formats without a catalog entry: {sorted(f.value for f in _missing)}")

_BY_EXTENSION: dict[str, ImageFormat] = {ext: spec.format for spec in _SPECS for ext in spec.extensions}
_BY_MIME: dict[str, ImageFormat] = {spec.mime: spec.format for spec in _SPECS}

ALLOWED_EXTENSIONS: frozenset[str] = frozenset(_BY_EXTENSION)
ALLOWED_MIME_TYPES: frozenset[str] = frozenset(_BY_MIME)


def extension_of(filename: str | None) -> str:
    """Lower-cased extension including the dot, or ``""``."""
    if not filename:
        return ""
    return os.path.splitext(filename)[1].lower()


def format_for_extension(ext: str) -> ImageFormat | None:
    return _BY_EXTENSION.get(ext.lower())


def format_for_mime(mime: str) -> ImageFormat | None:
    return _BY_MIME.get(mime)


def spec_for(image_format: ImageFormat) -> FormatSpec:
    return CATALOG[image_format]
