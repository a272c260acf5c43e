"""Diagnostics API routes."""

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application


class CheckResponse(BaseModel):
    """Response model for one connectivity check."""

    name: str
    ok: bool
    latency_ms: float | None = None
    error: str | None = None


class ConnectivityResponse(BaseModel):
    """Response model for a connectivity run."""

    ok: bool
    checks: list[CheckResponse]


def create_diagnostics_router(app: Application) -> APIRouter:
    """Create diagnostics router."""
    router = APIRouter(prefix="/api/diagnostics", tags=["diagnostics"])

    @router.get("/connectivity", response_model=ConnectivityResponse)
    async def connectivity() -> dict:
        """Check table, storage and realtime reachability."""
        try:
            report = await app.check_connectivity()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "ok": report.ok,
            "checks": [
                {
                    "name": c.name,
                    "ok": c.ok,
                    "latency_ms": c.latency_ms,
                    "error": c.error,
                }
                for c in report.checks
            ],
        }

    return router
