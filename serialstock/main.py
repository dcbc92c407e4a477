from __future__ import annotations

from fastapi import FastAPI, HTTPException

from serialstock.api.routers import catalog, serials
from serialstock.infra.audit import AuditMiddleware
from serialstock.infra.db import check_db_ready
from serialstock.infra.logging_setup import configure_logging
from serialstock.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="serialstock",
    description="Lifecycle tracking for serial-numbered stock items.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(catalog.router, prefix="/api/stock", tags=["catalog"])
app.include_router(serials.router, prefix="/api/stock", tags=["serials"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
