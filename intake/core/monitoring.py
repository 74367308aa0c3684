import logging

from intake.core.config import settings

logger = logging.getLogger(__name__)

_initialized = False
_sentry_enabled = False


def init_monitoring() -> None:
    """Start Sentry when ``SENTRY_DSN`` is set and tag events with the upload store."""
    global _initialized, _sentry_enabled
    if _initialized:
        return
    dsn = settings.SENTRY_DSN
    if dsn:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        try:
            sentry_sdk.init(
                dsn=dsn,
                integrations=[FastApiIntegration()],
                traces_sample_rate=0.1,
                profiles_sample_rate=0.0,
                environment=settings.ENV,
                release=f"sentul-intake@{settings.ENV}",
            )
            sentry_sdk.set_tag("upload.root", settings.UPLOAD_DIR)
            sentry_sdk.set_tag("upload.categories", ",".join(sorted(settings.UPLOAD_CATEGORIES)))
            _sentry_enabled = True
            logger.info("Sentry initialized for upload root %s", settings.UPLOAD_DIR)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to init Sentry: %s", exc)
    _initialized = True


def tag_storage_failure(kind: str, category: str | None, correlation_id: str) -> None:
    """Attach an upload storage failure to the current Sentry scope. No-op without Sentry."""
    if not _sentry_enabled:
        return
    import sentry_sdk

    sentry_sdk.set_tag("upload.error_kind", kind)
    sentry_sdk.set_tag("upload.category", category or "-")
    sentry_sdk.set_tag("cid", correlation_id)
