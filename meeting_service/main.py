"""Meeting Service Web Application."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meeting_service.core.config import settings
from meeting_service.core.database import create_db_and_tables
from meeting_service.core.errors import ConflictError, MeetingServiceError
from meeting_service.core.scheduler import shutdown_scheduler, start_scheduler
from meeting_service.routes import meetings, past_meetings, registrants, rsvps, webhooks

# Configure logging
log_dir = Path.home() / ".logs" / "meeting_service"
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    # Startup
    logger.info("Starting Meeting Service")
    create_db_and_tables()
    start_scheduler()
    yield
    # Shutdown
    shutdown_scheduler()
    logger.info("Meeting Service shut down")


app = FastAPI(
    title=settings.app_name,
    description="Schedules recurring virtual meetings and reconciles conferencing platform events",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS for external access
origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag"],
)


@app.exception_handler(MeetingServiceError)
async def meeting_service_error_handler(request: Request, exc: MeetingServiceError):
    """Map domain errors onto HTTP status codes."""
    status_code = exc.status_code
    if isinstance(exc, ConflictError) and exc.precondition_failed:
        status_code = 412
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# Include routers
app.include_router(meetings.router)
app.include_router(registrants.router)
app.include_router(rsvps.router)
app.include_router(past_meetings.router)
app.include_router(webhooks.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
