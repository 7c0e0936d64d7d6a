from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from functools import partial
import logging
import uuid

# Local imports
from app.core.config import settings
from app.logging import configure_logging
from app.middleware.logging import LoggingMiddleware
from app.api.location_service import LocationService, SingleLocationService
from app.api.routes import router as api_router
from app.models.dto import ErrorResponse, HealthResponse
from app.services.geocoding import build_reverse_geocoder
from app.services.location_provider import build_location_provider

configure_logging()
logger = logging.getLogger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Application startup: v{settings.VERSION}")
    # Fail fast on an unknown LOCATION_PROVIDER; each request gets its own handle.
    build_location_provider(settings)
    provider_factory = partial(build_location_provider, settings)

    app.state.location_service = LocationService(
        provider_factory=provider_factory,
        geocoder=build_reverse_geocoder(settings),
        acquisition_timeout=settings.LOCATION_ACQUISITION_TIMEOUT,
    )
    app.state.single_location_service = SingleLocationService(
        provider_factory=provider_factory,
        acquisition_timeout=settings.LOCATION_ACQUISITION_TIMEOUT,
    )
    if settings.LOCATION_ACQUISITION_TIMEOUT is None:
        logger.info(f"Location provider '{settings.LOCATION_PROVIDER}' ready; acquisitions are not time-limited.")
    else:
        logger.info(
            f"Location provider '{settings.LOCATION_PROVIDER}' ready; "
            f"acquisitions time out after {settings.LOCATION_ACQUISITION_TIMEOUT}s."
        )
    if not settings.MAPBOX_TOKEN:
        logger.warning("MAPBOX_TOKEN is not set; address lookups will report an error.")

    yield

    logger.info("Application shutdown.")

# --- FastAPI Application Initialization ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(LoggingMiddleware)

# --- API Routes ---
app.include_router(api_router, prefix=settings.API_PREFIX)

# --- Health Check Endpoint ---
@app.get("/health", status_code=status.HTTP_200_OK, response_model=HealthResponse)
async def health_check():
    return HealthResponse(location_provider=settings.LOCATION_PROVIDER)

# --- Global Exception Handler (for unhandled errors) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error(f"Unhandled exception (ID: {error_id}): {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="INTERNAL_SERVER_ERROR",
            detail=f"An unexpected error occurred. Please report this error ID: {error_id}",
        ).model_dump(),
    )
