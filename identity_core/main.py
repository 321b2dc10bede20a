from __future__ import annotations

from fastapi import FastAPI, HTTPException

from identity_core.api.routers import identity
from identity_core.infra.db import check_db_ready
from identity_core.infra.log_config import configure_logging

configure_logging()

app = FastAPI(
    title="identity-core",
    description="Multi-tenant identity graph with role assignment and policy-aware authorization.",
    version="0.1.0",
)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])


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
