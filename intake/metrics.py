"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can
change without touching the upload pipeline.

Metrics:
- image_uploads_accepted_total{format}     Uploads committed and re-verified
- image_uploads_rejected_total{reason}     Uploads refused by validation
- image_upload_rollbacks_total{stage}      Files removed after a failed write or re-verification
- image_assets_deleted_total               Stored assets removed by their owner
"""

from __future__ import annotations

import logging

from prometheus_client import Counter

logger = logging.getLogger("metrics")

_UPLOADS_ACCEPTED = Counter("image_uploads_accepted_total", "Image uploads committed", ["format"])
_UPLOADS_REJECTED = Counter("image_uploads_rejected_total", "Image uploads rejected by validation", ["reason"])
_UPLOAD_ROLLBACKS = Counter("image_upload_rollbacks_total", "Written files removed by rollback", ["stage"])
_ASSETS_DELETED = Counter("image_assets_deleted_total", "Stored image assets deleted")


def upload_accepted(image_format: str) -> None:
    _UPLOADS_ACCEPTED.labels(format=image_format).inc()


def upload_rejected(reason: str) -> None:
    _UPLOADS_REJECTED.labels(reason=reason).inc()


def upload_rolled_back(stage: str) -> None:
    logger.debug("rollback stage=%s", stage)
    _UPLOAD_ROLLBACKS.labels(stage=stage).inc()


def asset_deleted() -> None:
    _ASSETS_DELETED.inc()
