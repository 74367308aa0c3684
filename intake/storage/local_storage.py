from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from intake import metrics
from intake.core.config import settings
from intake.core.exceptions import UploadError, UploadErrorKind, UploadRejectedError, UploadStorageError
from intake.services.upload_validator import UploadCandidate, read_validated, validate
from intake.utils.file_validation import FormatVerdict
from intake.utils.id_generator import generate_upload_filename
from intake.utils.image_formats import ImageFormat

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_CATEGORY_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


@dataclass(frozen=True)
class StoredAsset:
    filename: str
    path: str
    url: str
    size: int
    format: ImageFormat
    category: str


class LocalImageStorage:
    """Validated image storage on the local filesystem.

    Files live at ``<root>/<category>/<generated name>`` and are addressed as
    ``<url_prefix>/<category>/<generated name>``. ``commit`` never returns an
    asset whose on-disk bytes fail re-validation; every failed write or
    re-check removes the file before raising.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        url_prefix: str | None = None,
        categories: Iterable[str] | None = None,
        copy_timeout: float | None = None,
    ) -> None:
        self.root = Path(root or settings.UPLOAD_DIR)
        self.url_prefix = (url_prefix or settings.UPLOAD_URL_PREFIX).rstrip("/")
        self.categories = frozenset(settings.UPLOAD_CATEGORIES if categories is None else categories)
        self.copy_timeout = settings.UPLOAD_COPY_TIMEOUT_SECONDS if copy_timeout is None else copy_timeout

    @property
    def marker(self) -> str:
        """Path segment identifying local uploads inside a URL, e.g. ``/uploads/``."""
        return self.url_prefix + "/"

    def commit(self, candidate: UploadCandidate, category: str, timeout: float | None = None) -> StoredAsset:
        """Validate, persist, and re-verify an upload.

        Raises:
            UploadRejectedError: invalid category or upload; nothing is written.
            UploadStorageError: the bytes could not be persisted or failed
                re-verification; any written file has been removed.
        """
        try:
            self.check_category(category)
            verdict = validate(candidate)
        except UploadRejectedError as exc:
            metrics.upload_rejected(exc.kind.value)
            raise

        category_dir = self._ensure_category_dir(category)
        filename = generate_upload_filename(candidate.filename)
        target = category_dir / filename
        deadline = time.monotonic() + (self.copy_timeout if timeout is None else timeout)

        self._write(candidate, target, deadline)
        self._reverify(target, candidate, verdict)

        try:
            size = target.stat().st_size
        except OSError as exc:
            self._rollback(target, "stat")
            raise UploadStorageError(
                UploadErrorKind.WRITE_FAILED,
                f"Failed to get file info: {exc}",
                details={"path": str(target)},
            ) from exc

        asset = StoredAsset(
            filename=filename,
            path=str(target.resolve()),
            url=f"{self.url_prefix}/{category}/{filename}",
            size=size,
            format=verdict.format,  # type: ignore[arg-type]
            category=category,
        )
        metrics.upload_accepted(asset.format.value)
        logger.info("Stored %s image %s (%d bytes)", asset.format.value, asset.url, asset.size)
        return asset

    @contextmanager
    def provisional(
        self, candidate: UploadCandidate, category: str, timeout: float | None = None
    ) -> Iterator[StoredAsset]:
        """Commit an upload that is deleted again unless the block succeeds.

        Use it around persisting the record that will own the asset::

            with storage.provisional(candidate, "news") as asset:
                post.image_url = asset.url
                db.commit()
        """
        asset = self.commit(candidate, category, timeout=timeout)
        try:
            yield asset
        except BaseException:
            self._discard(asset)
            raise

    def delete(self, asset_url: str | None) -> None:
        """Remove a stored asset by its public URL. Unknown or missing files are a no-op."""
        path = self.resolve_path(asset_url)
        if path is None or not path.is_file():
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.exception("Failed to delete image %s", path)
            raise UploadStorageError(
                UploadErrorKind.DELETE_FAILED,
                "Failed to delete image file",
                details={"url": asset_url, "path": str(path)},
            ) from exc
        metrics.asset_deleted()
        logger.info("Deleted image %s", asset_url)

    def resolve_path(self, asset_url: str | None) -> Path | None:
        """Map a public (possibly absolute) URL to the file it names, if we own it."""
        if not asset_url:
            return None
        url = asset_url.split("?", 1)[0].split("#", 1)[0]
        idx = url.find(self.marker)
        if idx == -1:
            return None
        relative = url[idx + len(self.marker):]
        if not relative:
            return None
        root = self.root.resolve()
        path = (root / relative).resolve()
        if path == root or not path.is_relative_to(root):
            logger.warning("Ignoring image URL outside the upload root: %s", asset_url)
            return None
        return path

    def ensure_layout(self) -> None:
        """Create the root and every configured category directory."""
        for category in sorted(self.categories):
            self._ensure_category_dir(category)
        if not self.categories:
            self._mkdir(self.root)

    def is_writable(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    def check_category(self, category: str) -> None:
        if not _CATEGORY_RE.match(category or "") or (self.categories and category not in self.categories):
            raise UploadRejectedError(
                UploadErrorKind.INVALID_CATEGORY,
                f"Unknown upload category: {category!r}",
                details={"category": category, "allowed": sorted(self.categories)},
            )

    def _ensure_category_dir(self, category: str) -> Path:
        path = self.root / category
        self._mkdir(path)
        return path

    def _mkdir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.exception("Upload directory %s unavailable", path)
            raise UploadStorageError(
                UploadErrorKind.STORAGE_UNAVAILABLE,
                "Failed to create upload directory",
                details={"path": str(path)},
            ) from exc

    def _write(self, candidate: UploadCandidate, target: Path, deadline: float) -> None:
        written = 0
        try:
            with open(target, "xb") as dst:
                while True:
                    if time.monotonic() >= deadline:
                        raise TimeoutError("upload copy exceeded its deadline")
                    chunk = candidate.stream.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > candidate.declared_size:
                        raise UploadRejectedError(
                            UploadErrorKind.SIZE_MISMATCH,
                            "File is larger than its declared size",
                            details={"declared_size": candidate.declared_size},
                        )
                    dst.write(chunk)
                dst.flush()
                os.fsync(dst.fileno())
            if written != candidate.declared_size:
                raise UploadRejectedError(
                    UploadErrorKind.SIZE_MISMATCH,
                    "File size mismatch",
                    details={"declared_size": candidate.declared_size, "actual_size": written},
                )
        except FileExistsError as exc:
            # Someone else's file; leave it alone
            raise UploadStorageError(
                UploadErrorKind.WRITE_FAILED,
                "Generated filename already exists",
                details={"path": str(target)},
            ) from exc
        except UploadRejectedError as exc:
            self._rollback(target, "write")
            metrics.upload_rejected(exc.kind.value)
            raise
        except Exception as exc:
            self._rollback(target, "write")
            raise UploadStorageError(
                UploadErrorKind.WRITE_FAILED,
                f"Failed to save file: {exc}",
                details={"path": str(target), "bytes_written": written},
            ) from exc
        except BaseException:
            self._rollback(target, "write")
            raise

    def _reverify(self, target: Path, candidate: UploadCandidate, verdict: FormatVerdict) -> None:
        try:
            with open(target, "rb") as fh:
                persisted = UploadCandidate(
                    stream=fh,
                    filename=target.name,
                    declared_size=candidate.declared_size,
                    category=candidate.category,
                )
                _, reverified = read_validated(persisted)
        except (UploadError, OSError) as exc:
            self._rollback(target, "verify")
            reason = exc.message if isinstance(exc, UploadError) else str(exc)
            raise UploadStorageError(
                UploadErrorKind.POST_WRITE_VALIDATION_FAILED,
                f"Saved file validation failed: {reason}",
                details={"path": str(target)},
            ) from exc
        if reverified.format is not verdict.format:
            self._rollback(target, "verify")
            raise UploadStorageError(
                UploadErrorKind.POST_WRITE_VALIDATION_FAILED,
                "Saved file no longer matches the uploaded format",
                details={
                    "path": str(target),
                    "expected": verdict.format.value if verdict.format else None,
                    "found": reverified.format.value if reverified.format else None,
                },
            )

    def _rollback(self, target: Path, stage: str) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError:
            logger.exception("Rollback could not remove %s after %s failure", target, stage)
            return
        metrics.upload_rolled_back(stage)
        logger.warning("Rolled back %s after %s failure", target, stage)

    def _discard(self, asset: StoredAsset) -> None:
        try:
            self.delete(asset.url)
        except UploadStorageError:
            logger.exception("Failed to discard unclaimed image %s", asset.url)
            return
        metrics.upload_rolled_back("owner")


# Singleton instance for application use
image_storage = LocalImageStorage()
