"""
FastAPI application for PropEdge
Exposes each pipeline component's actions over REST
"""

from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from propedge import __version__
from propedge.models import get_db, init_db
from propedge.schemas import ActionRequest, ActionResponse, Component, HealthResponse, is_known_action
from propedge.services.pipeline import run_action

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# error_type → HTTP status for failed runs
_ERROR_STATUS = {
    "UpstreamFetchError": 502,
    "InvariantViolation": 500,
    "ValidationError": 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting PropEdge %s", __version__)
    init_db()
    yield
    logger.info("PropEdge shut down")


app = FastAPI(
    title="PropEdge",
    description="Player-prop edge computation, parlay assembly and outcome reconciliation",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/")
async def root():
    return {
        "app": "PropEdge",
        "version": __version__,
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "version": __version__}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {e}"
    return health


@app.post("/api/{component}", response_model=ActionResponse)
def component_action(component: Component, request: ActionRequest, db: Session = Depends(get_db)):
    """Run one component action and return its summary."""
    if not is_known_action(component, request.action):
        raise HTTPException(status_code=400, detail=f"Unknown action '{request.action}' for {component}")

    result = run_action(component, request.action, request.params, db=db)
    if result.get("status") == "error":
        status_code = _ERROR_STATUS.get(result.get("error_type"), 500)
        raise HTTPException(status_code=status_code, detail=result)
    return result
