"""Battery fleet lifecycle service: FastAPI backend."""
import logging
import os
import subprocess
import sys

from fastapi import FastAPI

# Show command and reconciliation activity (INFO level)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("fleet_core").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware

from api.alerts import router as alerts_router
from api.routes import router
from api.units import router as units_router
from fleet_core.context import FleetContext
from fleet_core.reconciler import run_reconcile_pass
from fleet_core.sequencer import ReconciliationLoop
from utils.config import (
    PORT,
    RECONCILE_ENABLED,
    RECONCILE_INITIAL_DELAY_S,
    RECONCILE_INTERVAL_S,
)

LOG = logging.getLogger(__name__)

app = FastAPI(
    title="Battery Fleet",
    description="Lifecycle, charge projection and alerting for battery-powered medical units",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8080", "http://127.0.0.1:8080"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes under /api (no static mount at / so /api is never shadowed)
app.include_router(router, prefix="/api")
app.include_router(units_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")

app.state.fleet = FleetContext()
app.state.reconcile_loop = None


@app.on_event("startup")
async def startup() -> None:
    """Run DB migrations and start the reconciliation loop."""
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        cwd=backend_dir,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise RuntimeError(f"Alembic upgrade failed: {result.stderr or result.stdout}")
    if RECONCILE_ENABLED:
        _start_reconcile_loop(app.state.fleet)


def _start_reconcile_loop(ctx: FleetContext) -> None:
    """Timer ticks and unit/alert change signals both feed the same single-writer loop."""
    loop = ReconciliationLoop(
        lambda: run_reconcile_pass(ctx),
        interval_s=RECONCILE_INTERVAL_S,
        initial_delay_s=RECONCILE_INITIAL_DELAY_S,
    )
    loop.start()
    loop.attach(ctx.notifier)
    app.state.reconcile_loop = loop
    LOG.info("Reconciliation loop started (every %ss)", RECONCILE_INTERVAL_S)


@app.on_event("shutdown")
async def shutdown() -> None:
    """Stop the reconciliation loop and tear down the fleet context."""
    loop = app.state.reconcile_loop
    if loop is not None:
        await loop.stop()
        app.state.reconcile_loop = None
    app.state.fleet.close()


@app.get("/")
def root() -> dict:
    """Root redirect/info."""
    return {"service": "battery-fleet", "docs": "/docs", "health": "/api/health"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=PORT)
