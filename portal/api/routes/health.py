from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from portal.dependencies.auth import Role, role_required
from portal.metrics import metrics_registry

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ping/ready", summary="Database readiness check")
async def ready(request: Request) -> dict[str, str]:
    postgres = getattr(request.app.state, "postgres", None)
    if postgres is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await postgres.ping()
    except Exception as exc:  # pragma: no cover - depends on a live database
        raise HTTPException(status_code=503, detail="Database is unreachable") from exc
    return {"status": "ok"}


@router.get("/metrics", dependencies=[Depends(role_required(Role.ADMIN))])
async def metrics_snapshot() -> dict[str, Any]:
    return metrics_registry.snapshot()
