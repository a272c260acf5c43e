"""Control API routes: data reset, local seeding and the traffic SIM."""

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application
from ...backend import LocalBackend


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class SimStatusResponse(BaseModel):
    """Response model for SIM state."""

    configured: bool
    running: bool


class SeedTournamentRequest(BaseModel):
    """Request model for seeding a tournament on the local backend."""

    tournament_id: str
    organizer_id: str
    player_ids: list[str] = []


# Set by main.py; tests leave it unset
_sim_instance = None


def set_sim_instance(sim) -> None:
    """Register the SIM driven by /api/control/sim/*."""
    global _sim_instance
    _sim_instance = sim


def get_sim_instance():
    return _sim_instance


def _require_sim():
    if _sim_instance is None:
        raise HTTPException(status_code=404, detail="SIM not configured")
    return _sim_instance


def create_control_router(app: Application) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Close every session and wipe chat data."""
        try:
            await app.reset()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    @router.post("/tournaments", response_model=StatusResponse)
    async def seed_tournament(request: SeedTournamentRequest) -> dict:
        """Create a tournament with its organizer and registered players."""
        backend = app.backend
        if not isinstance(backend, LocalBackend):
            raise HTTPException(
                status_code=400, detail="Seeding is only supported on the local backend"
            )
        try:
            await backend.add_tournament(request.tournament_id, request.organizer_id)
            for player_id in request.player_ids:
                await backend.register_player(request.tournament_id, player_id)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    @router.get("/sim", response_model=SimStatusResponse)
    async def sim_status() -> dict:
        """Whether a SIM is configured and currently generating traffic."""
        return {
            "configured": _sim_instance is not None,
            "running": bool(_sim_instance and _sim_instance.running),
        }

    @router.post("/sim/start", response_model=StatusResponse)
    async def start_sim() -> dict:
        """Start the scripted chat scenario."""
        sim = _require_sim()
        try:
            await sim.start()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    @router.post("/sim/stop", response_model=StatusResponse)
    async def stop_sim() -> dict:
        """Stop the scenario and close its sessions."""
        sim = _require_sim()
        try:
            await sim.stop()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    return router
