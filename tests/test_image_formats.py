"""Tests for the supported image format catalog."""
import pytest

from intake.utils.image_formats import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    CATALOG,
    ImageFormat,
    Signature,
    extension_of,
    format_for_extension,
    format_for_mime,
)


def test_every_format_has_a_catalog_entry():
    assert set(CATALOG) == set(ImageFormat)
    for image_format, spec in CATALOG.items():
        assert spec.format is image_format
        assert spec.extensions
        assert spec.signatures


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        CATALOG[ImageFormat.JPEG] = CATALOG[ImageFormat.PNG]  # type: ignore[index]


def test_allowed_sets():
    assert ALLOWED_EXTENSIONS == {".jpg", ".jpeg", ".png", ".webp", ".heic"}
    assert ALLOWED_MIME_TYPES == {"image/jpeg", "image/png", "image/webp", "image/heic"}


@pytest.mark.parametrize(
    "ext, expected",
    [
        (".jpg", ImageFormat.JPEG),
        (".JPEG", ImageFormat.JPEG),
        (".png", ImageFormat.PNG),
        (".webp", ImageFormat.WEBP),
        (".HeIc", ImageFormat.HEIC),
        (".gif", None),
        ("", None),
    ],
)
def test_format_for_extension(ext, expected):
    assert format_for_extension(ext) is expected


def test_format_for_mime():
    assert format_for_mime("image/webp") is ImageFormat.WEBP
    assert format_for_mime("image/jpg") is None
    assert format_for_mime("application/octet-stream") is None


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("photo.JPG", ".jpg"),
        ("archive.tar.png", ".png"),
        ("noext", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_extension_of(filename, expected):
    assert extension_of(filename) == expected


def test_signature_never_matches_short_buffer():
    sig = Signature(8, (b"WEBP",))
    assert sig.matches(b"RIFF\x00\x00\x00\x00WEBP")
    assert not sig.matches(b"RIFF\x00\x00\x00\x00WEB")
