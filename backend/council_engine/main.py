"""
Council Engine - FastAPI Application

Main entry point for the disciplinary governance backend.

Flow:
- Inactivity → EscalationLadder → warnings (levels 1-3)
- Level 4 → ReviewCaseEngine → committee vote (QuorumVoter) or timeout
- Expulsion → ReentryService → permanent ban → BanRegistry
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .database import init_db
from .routers import (
    auth_router, council_router, reports_router, conflicts_router,
    reentry_router, registration_router, scheduler_router,
)
from .services.governance import GovernanceError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Council Engine",
    description="""
    Council Engine - Disciplinary Governance

    Detects member inactivity, escalates it through timed warnings into a
    peer-committee vote on expulsion, resolves that vote under quorum or
    timeout, and governs re-entry of expelled members.

    ## Key Principles
    - One pending review case per member
    - One ballot per committee member per case; the first choice to 2 votes wins
    - Deadlines are enforced by the daily batch and on every vote
    - A second expulsion is permanent and bans the member's identifiers
    - Every state change is written to the governance log
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError):
    """Rule violations become specific HTTP errors ("already voted", "already decided", ...)."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


# Include routers
app.include_router(auth_router)
app.include_router(council_router)
app.include_router(reports_router)
app.include_router(conflicts_router)
app.include_router(reentry_router)
app.include_router(registration_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Council Engine",
        "version": "1.0.0",
        "description": "Disciplinary governance for the referral network",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m council_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
