# app/api/routes.py
# HTTP endpoints that forward raw requests to the location routers

from fastapi import APIRouter, Request
from fastapi.responses import Response

from app.api.location_service import LocationService, ServiceResponse, SingleLocationService
from app.core.config import settings
from app.models.dto import ErrorResponse

router = APIRouter()

# The routers answer 405 themselves, so every method has to reach them.
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    405: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def service_url(request: Request) -> str:
    """Path (without the API mount prefix) plus query string, as the routers expect it."""
    path = request.url.path
    prefix = settings.API_PREFIX.rstrip("/")
    if prefix and path.startswith(prefix):
        path = path[len(prefix):] or "/"
    query = request.url.query
    return f"{path}?{query}" if query else path


def to_response(result: ServiceResponse) -> Response:
    return Response(
        content=result.body,
        status_code=result.status_code,
        headers=result.headers,
        media_type="application/json",
    )


@router.api_route("/location", methods=ALL_METHODS, responses=ERROR_RESPONSES)
@router.api_route("/location/{subpath:path}", methods=ALL_METHODS, responses=ERROR_RESPONSES)
async def location(request: Request):
    """Single fix, reverse geocoding and distance lookups."""
    service: LocationService = request.app.state.location_service
    result = await service.perform_request(request.method, service_url(request))
    return to_response(result)


@router.api_route("/singlelocation", methods=ALL_METHODS, responses=ERROR_RESPONSES)
async def single_location(request: Request):
    service: SingleLocationService = request.app.state.single_location_service
    result = await service.perform_request(request.method, service_url(request))
    return to_response(result)
