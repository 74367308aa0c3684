import io
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from intake.core.exceptions import UploadErrorKind, UploadRejectedError, UploadStorageError
from intake.services.upload_validator import UploadCandidate
from intake.storage.local_storage import LocalImageStorage
from intake.utils.file_validation import verify_signature
from intake.utils.image_formats import ImageFormat

STORED_NAME = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}_\d+\.[a-z]+$")


class _FailingStream(io.BytesIO):
    """Serves the validation peek, then fails on the next read."""

    def __init__(self, data, exc):
        super().__init__(data)
        self._reads = 0
        self._exc = exc

    def read(self, *args, **kwargs):
        self._reads += 1
        if self._reads > 1:
            raise self._exc
        return super().read(*args, **kwargs)


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestCommit:
    def test_stores_and_describes_the_asset(self, storage, samples):
        asset = storage.commit(UploadCandidate.from_bytes(samples.jpeg, "My Photo.JPG"), "news")

        assert STORED_NAME.match(asset.filename)
        assert asset.filename.endswith(".jpg")
        assert asset.url == f"/uploads/news/{asset.filename}"
        assert asset.category == "news"
        assert asset.format is ImageFormat.JPEG
        assert asset.size == len(samples.jpeg)

        on_disk = Path(asset.path).read_bytes()
        assert on_disk == samples.jpeg
        assert verify_signature(on_disk, asset.format)
        assert Path(asset.path).parent == (storage.root / "news").resolve()

    @pytest.mark.parametrize(
        "attr, filename",
        [("png", "a.png"), ("apng", "a.png"), ("webp", "a.webp"), ("webp_bare", "a.webp"), ("heic", "a.heic")],
    )
    def test_other_formats(self, storage, samples, attr, filename):
        asset = storage.commit(UploadCandidate.from_bytes(getattr(samples, attr), filename), "events")
        assert Path(asset.path).read_bytes() == getattr(samples, attr)

    def test_identical_uploads_get_distinct_names(self, storage, samples):
        first = storage.commit(UploadCandidate.from_bytes(samples.png, "a.png"), "news")
        second = storage.commit(UploadCandidate.from_bytes(samples.png, "a.png"), "news")
        assert first.filename != second.filename
        assert Path(first.path).exists() and Path(second.path).exists()

    def test_concurrent_commits_do_not_collide(self, storage, samples, stored_files):
        def upload(_):
            return storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "holes")

        with ThreadPoolExecutor(max_workers=8) as pool:
            assets = list(pool.map(upload, range(16)))

        assert len({a.filename for a in assets}) == 16
        assert len(stored_files()) == 16

    def test_records_accepted_metric(self, storage, samples):
        before = _sample("image_uploads_accepted_total", {"format": "png"})
        storage.commit(UploadCandidate.from_bytes(samples.png, "a.png"), "news")
        assert _sample("image_uploads_accepted_total", {"format": "png"}) == before + 1


class TestRejections:
    @pytest.mark.parametrize(
        "attr, filename, declared_size, kind",
        [
            ("jpeg", "a.jpg", 0, UploadErrorKind.EMPTY),
            ("jpeg", "a.jpg", 6 * 1024 * 1024, UploadErrorKind.TOO_LARGE),
            ("gif", "a.gif", None, UploadErrorKind.EXTENSION_NOT_ALLOWED),
            ("text", "a.png", None, UploadErrorKind.CONTENT_TYPE_NOT_ALLOWED),
            ("webp", "a.png", None, UploadErrorKind.SIGNATURE_MISMATCH),
        ],
    )
    def test_rejected_uploads_write_nothing(self, storage, samples, stored_files, attr, filename, declared_size, kind):
        candidate = UploadCandidate.from_bytes(getattr(samples, attr), filename, declared_size=declared_size)
        before = _sample("image_uploads_rejected_total", {"reason": kind.value})

        with pytest.raises(UploadRejectedError) as exc_info:
            storage.commit(candidate, "news")

        assert exc_info.value.kind is kind
        assert stored_files() == []
        assert _sample("image_uploads_rejected_total", {"reason": kind.value}) == before + 1

    @pytest.mark.parametrize("category", ["misc", "../etc", "News", "", "news/../../x"])
    def test_unknown_category(self, storage, samples, category):
        with pytest.raises(UploadRejectedError) as exc_info:
            storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), category)
        assert exc_info.value.kind is UploadErrorKind.INVALID_CATEGORY
        assert not storage.root.exists()

    def test_open_category_set_still_checks_names(self, tmp_path, samples):
        storage = LocalImageStorage(root=tmp_path / "open", categories=[])
        assert storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "anything").category == "anything"
        with pytest.raises(UploadRejectedError):
            storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "../up")

    def test_stream_longer_than_declared(self, storage, samples, stored_files):
        candidate = UploadCandidate(
            stream=io.BytesIO(samples.jpeg + b"\x00" * 32),
            filename="a.jpg",
            declared_size=len(samples.jpeg),
        )
        with pytest.raises(UploadRejectedError) as exc_info:
            storage.commit(candidate, "news")
        assert exc_info.value.kind is UploadErrorKind.SIZE_MISMATCH
        assert stored_files() == []

    def test_stream_shorter_than_declared(self, storage, samples, stored_files):
        candidate = UploadCandidate.from_bytes(samples.jpeg, "a.jpg", declared_size=len(samples.jpeg) + 100)
        with pytest.raises(UploadRejectedError) as exc_info:
            storage.commit(candidate, "news")
        assert exc_info.value.kind is UploadErrorKind.SIZE_MISMATCH
        assert stored_files() == []


class TestRollback:
    def test_copy_failure_removes_partial_file(self, storage, samples, stored_files):
        stream = _FailingStream(samples.jpeg, OSError("connection reset"))
        candidate = UploadCandidate(stream=stream, filename="a.jpg", declared_size=len(samples.jpeg))

        with pytest.raises(UploadStorageError) as exc_info:
            storage.commit(candidate, "news")

        assert exc_info.value.kind is UploadErrorKind.WRITE_FAILED
        assert stored_files() == []

    def test_cancellation_removes_partial_file(self, storage, samples, stored_files):
        stream = _FailingStream(samples.jpeg, KeyboardInterrupt())
        candidate = UploadCandidate(stream=stream, filename="a.jpg", declared_size=len(samples.jpeg))

        with pytest.raises(KeyboardInterrupt):
            storage.commit(candidate, "news")

        assert stored_files() == []

    def test_deadline_exceeded(self, storage, samples, stored_files):
        with pytest.raises(UploadStorageError) as exc_info:
            storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news", timeout=0)
        assert exc_info.value.kind is UploadErrorKind.WRITE_FAILED
        assert stored_files() == []

    def test_unavailable_root(self, tmp_path, samples):
        blocker = tmp_path / "uploads"
        blocker.write_text("not a directory")
        storage = LocalImageStorage(root=blocker, categories=["news"])

        with pytest.raises(UploadStorageError) as exc_info:
            storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news")
        assert exc_info.value.kind is UploadErrorKind.STORAGE_UNAVAILABLE

    @pytest.mark.parametrize(
        "corrupt",
        [
            lambda path, samples: path.write_bytes(b"\x00" * path.stat().st_size),
            lambda path, samples: path.write_bytes(path.read_bytes()[:10]),
            lambda path, samples: path.write_bytes(samples.png),
        ],
        ids=["zeroed", "truncated", "swapped"],
    )
    def test_corruption_before_reverification(self, storage, samples, stored_files, monkeypatch, corrupt):
        original_write = storage._write
        before = _sample("image_upload_rollbacks_total", {"stage": "verify"})

        def corrupting_write(candidate, target, deadline):
            original_write(candidate, target, deadline)
            corrupt(target, samples)

        monkeypatch.setattr(storage, "_write", corrupting_write)

        with pytest.raises(UploadStorageError) as exc_info:
            storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news")

        assert exc_info.value.kind is UploadErrorKind.POST_WRITE_VALIDATION_FAILED
        assert stored_files() == []
        assert _sample("image_upload_rollbacks_total", {"stage": "verify"}) == before + 1


class TestProvisional:
    def test_kept_when_block_succeeds(self, storage, samples):
        with storage.provisional(UploadCandidate.from_bytes(samples.png, "a.png"), "news") as asset:
            pass
        assert Path(asset.path).exists()

    def test_removed_when_block_fails(self, storage, samples, stored_files):
        with pytest.raises(RuntimeError, match="db down"):
            with storage.provisional(UploadCandidate.from_bytes(samples.png, "a.png"), "news") as asset:
                assert Path(asset.path).exists()
                raise RuntimeError("db down")
        assert stored_files() == []

    def test_rejection_never_enters_block(self, storage, samples):
        entered = False
        with pytest.raises(UploadRejectedError):
            with storage.provisional(UploadCandidate.from_bytes(samples.text, "a.png"), "news"):
                entered = True
        assert entered is False


class TestDelete:
    def test_delete_is_idempotent(self, storage, samples):
        asset = storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news")
        storage.delete(asset.url)
        assert not Path(asset.path).exists()
        storage.delete(asset.url)

    def test_accepts_absolute_urls(self, storage, samples):
        asset = storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news")
        storage.delete(f"http://old-host:8000{asset.url}?v=2")
        assert not Path(asset.path).exists()

    @pytest.mark.parametrize(
        "url",
        [
            None,
            "",
            "https://cdn.example.com/images/a.jpg",
            "/uploads/",
            "/uploads/news/missing.jpg",
            "/uploads/../../etc/passwd",
            "/uploads/news/../../outside.jpg",
        ],
    )
    def test_unknown_or_foreign_urls_are_ignored(self, storage, tmp_path, url):
        outside = tmp_path / "outside.jpg"
        outside.write_bytes(b"keep me")
        storage.ensure_layout()

        storage.delete(url)

        assert outside.read_bytes() == b"keep me"
        assert storage.root.is_dir()

    def test_does_not_delete_directories(self, storage):
        storage.ensure_layout()
        storage.delete("/uploads/news")
        assert (storage.root / "news").is_dir()

    def test_failure_is_reported(self, storage, samples, monkeypatch):
        asset = storage.commit(UploadCandidate.from_bytes(samples.jpeg, "a.jpg"), "news")

        def refuse(self, missing_ok=False):
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(Path, "unlink", refuse)
        with pytest.raises(UploadStorageError) as exc_info:
            storage.delete(asset.url)
        assert exc_info.value.kind is UploadErrorKind.DELETE_FAILED


def test_resolve_path_stays_inside_root(storage):
    root = storage.root.resolve()
    assert storage.resolve_path("/uploads/news/a.jpg") == root / "news" / "a.jpg"
    assert storage.resolve_path("/uploads/../secret") is None
    assert storage.resolve_path("/static/news/a.jpg") is None


def test_ensure_layout_and_writability(storage):
    assert storage.is_writable() is False
    storage.ensure_layout()
    assert sorted(p.name for p in storage.root.iterdir()) == ["events", "holes", "news"]
    assert storage.is_writable() is True
