from __future__ import annotations

import os

os.environ["APP_ENV"] = "test"
os.environ["ENV"] = "test"

from pathlib import Path  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from intake.api.dependencies import get_base_url, get_image_storage  # noqa: E402
from intake.api.main import app  # noqa: E402
from intake.db.base_class import Base  # noqa: E402
from intake.db.session import SessionLocal, engine  # noqa: E402
from intake.models import models  # noqa: E402,F401
from intake.storage.local_storage import LocalImageStorage  # noqa: E402

BASE_URL = "http://testserver"

JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00" + b"\x00" * 64 + b"\xff\xd9"
PNG = (
    b"\x89PNG\r\n\x1a\n"
    + b"\x00\x00\x00\x0dIHDR"
    + b"\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00"
    + b"\x90wS\xde"
    + b"\x00\x00\x00\x00IEND\xaeB`\x82"
)
WEBP = b"RIFF" + (30).to_bytes(4, "little") + b"WEBPVP8 " + (18).to_bytes(4, "little") + b"\x00" * 18
# Bare RIFF header with a WEBP fourcc and no VP8 chunk
WEBP_BARE = b"RIFF\x00\x00\x00\x00WEBP"
HEIC = b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00mif1heic" + b"\x00" * 16
# mif1 brand without a heic compatible brand: generic sniffers do not recognise it
HEIC_MIF1 = b"\x00\x00\x00\x14ftypmif1\x00\x00\x00\x00mif1" + b"\x00" * 12
WAV = b"RIFF" + (36).to_bytes(4, "little") + b"WAVEfmt " + b"\x00" * 24
TEXT = b"hello, this is definitely not an image\n" * 4
GIF = b"GIF89a\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff\x00\x00\x00!\xf9\x04\x01\x00\x00\x00\x00,\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"
APNG = (
    b"\x89PNG\r\n\x1a\n"
    + b"\x00\x00\x00\x0dIHDR"
    + b"\x00\x00\x00\x01\x00\x00\x00\x01\x08\x06\x00\x00\x00"
    + b"\x1f\x15\xc4\x89"
    + b"\x00\x00\x00\x08acTL"
    + b"\x00\x00\x00\x01\x00\x00\x00\x00"
    + b"\xb4\x2a\xde\x9b"
    + b"\x00\x00\x00\x0aIDAT"
    + b"\x78\x9c\x63\x00\x01\x00\x00\x05\x00\x01"
    + b"\x0d\x0a\x2d\xb4"
    + b"\x00\x00\x00\x00IEND\xaeB`\x82"
)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Ensure each test sees a fresh database schema."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def samples() -> SimpleNamespace:
    """Minimal but structurally valid payloads for each supported and unsupported format."""
    return SimpleNamespace(
        jpeg=JPEG,
        png=PNG,
        webp=WEBP,
        webp_bare=WEBP_BARE,
        heic=HEIC,
        heic_mif1=HEIC_MIF1,
        wav=WAV,
        text=TEXT,
        gif=GIF,
        apng=APNG,
    )


@pytest.fixture
def storage(tmp_path: Path) -> LocalImageStorage:
    """Storage rooted in a per-test directory."""
    return LocalImageStorage(
        root=tmp_path / "uploads",
        url_prefix="/uploads",
        categories=["news", "events", "holes"],
        copy_timeout=30,
    )


@pytest.fixture
def stored_files(storage: LocalImageStorage):
    """List every file currently under the storage root, relative to it."""

    def _list() -> list[str]:
        if not storage.root.exists():
            return []
        return sorted(str(p.relative_to(storage.root)) for p in storage.root.rglob("*") if p.is_file())

    return _list


@pytest.fixture
def client(storage: LocalImageStorage):
    """TestClient wired to the per-test storage and a fixed base URL."""
    app.dependency_overrides[get_image_storage] = lambda: storage
    app.dependency_overrides[get_base_url] = lambda: BASE_URL
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Provide a database session for arranging test data."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()
