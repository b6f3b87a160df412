"""API route handlers shared by the routers: health and the fleet context dependency."""
from fastapi import APIRouter, Depends, Request

from fleet_core.context import FleetContext
from schemas.health import HealthResponse

router = APIRouter()


def get_fleet_context(request: Request) -> FleetContext:
    """FastAPI dependency: the process-scoped fleet context built at startup."""
    return request.app.state.fleet


@router.get("/health", response_model=HealthResponse)
def health(request: Request, ctx: FleetContext = Depends(get_fleet_context)) -> HealthResponse:
    """Health check endpoint."""
    loop = getattr(request.app.state, "reconcile_loop", None)
    return HealthResponse(
        reconcile_running=bool(loop is not None and loop.running),
        store_available=ctx.store_available,
    )
