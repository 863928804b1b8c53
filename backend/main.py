"""FastAPI backend for the question backfill service."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from quizfill.config import get_settings

settings = get_settings()

logger = logging.getLogger(__name__)
logging.basicConfig(level=getattr(logging, settings.qf_log_level.upper(), logging.INFO))

from backend.routes import backfill  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    backfill.dispatcher.shutdown(wait=False)


app = FastAPI(
    title="Quizfill API",
    description="Self-chaining quiz question backfill.",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

cors_origins = settings.cors_origin_list
logger.info("CORS configured for origins: %s", cors_origins)
logger.info(
    "Stores: %s",
    "Postgres (QF_DATABASE_URL)" if settings.qf_database_url else f"file-based ({settings.data_dir})",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str
    data_dir: str


@app.get("/health", response_model=HealthResponse)
@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", data_dir=str(settings.data_dir))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
app.include_router(backfill.router, prefix="/api", tags=["backfill"])
