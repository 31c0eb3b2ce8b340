from __future__ import annotations

from fastapi import FastAPI, HTTPException

from asset_buddy.api.routers import activity, asset, assignment, notification
from asset_buddy.infra.audit import AuditMiddleware
from asset_buddy.infra.db import check_db_ready
from asset_buddy.infra.logging_config import configure_logging

configure_logging()

app = FastAPI(
    title="asset-buddy",
    description="IT asset inventory with the assignment lifecycle engine.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(asset.router, prefix="/api/assets", tags=["assets"])
app.include_router(assignment.router, prefix="/api/assignments", tags=["assignments"])
app.include_router(notification.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(activity.router, prefix="/api/activity", tags=["activity"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
