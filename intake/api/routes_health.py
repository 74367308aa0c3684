from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from intake.api.dependencies import DbDep, ImageStorageDep

router = APIRouter(tags=["health"])


def _check_db(db: Session) -> bool:
    db.execute(text("SELECT 1"))
    return True


@router.get("/live")
async def live() -> dict[str, str]:
    """Kubernetes-style liveness endpoint (no dependencies)."""
    return {"status": "alive"}


@router.get("/healthz")
def healthz(db: DbDep, storage: ImageStorageDep) -> dict[str, object]:
    """Readiness: database reachable and upload root writable."""
    start = time.time()
    try:
        db_ok = _check_db(db)
    except Exception:  # noqa: BLE001
        db_ok = False
    storage_ok = storage.is_writable()
    duration_ms = int((time.time() - start) * 1000)
    if not (db_ok and storage_ok):
        raise HTTPException(status_code=503, detail={
            "db": db_ok,
            "storage": storage_ok,
            "latency_ms": duration_ms,
        })
    return {"status": "ok", "db": db_ok, "storage": storage_ok, "latency_ms": duration_ms}
