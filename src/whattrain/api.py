"""
WhatTrain HTTP API

Thin FastAPI layer over the train finder: request parsing, JSON envelopes,
error-to-status mapping and CORS.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings
from .errors import NoDataError, WhatTrainError
from .feed_client import MTAFeedClient
from .gtfs_loader import GTFSLoader
from .models import Route, TrainCandidate
from .schemas import IdentifyTrainsRequest, NearestTrainsRequest
from .train_finder import TrainFinder
from .train_identifier import TrainIdentifier
from .trip_builder import TripBuilder, format_timestamp

logger = logging.getLogger(__name__)

router = APIRouter()


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _to_camel(name: str) -> str:
    first, *rest = name.split("_")
    return first + "".join(word.capitalize() for word in rest)


def to_json(obj: Any) -> Any:
    """Dataclasses -> plain JSON-ready structures with camelCase keys."""
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if isinstance(obj, dict):
        return {_to_camel(str(key)): to_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json(value) for value in obj]
    return obj


def success(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data, "timestamp": _now_iso()}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "timestamp": _now_iso()},
    )


def serialize_candidate(candidate: TrainCandidate, route: Optional[Route], line_code: str) -> Dict[str, Any]:
    vehicle = candidate.vehicle

    current_station = "Unknown Station"
    if candidate.trip.current_stop is not None:
        current_station = candidate.trip.current_stop.name

    return {
        "trainId": vehicle.vehicle_id,
        "label": vehicle.label,
        "line": {
            "code": route.short_name if route else line_code,
            "name": route.long_name if route else line_code,
            "color": f"#{route.color}" if route and route.color else "#808080",
        },
        "direction": candidate.trip.direction_name,
        "directionId": candidate.direction,
        "currentStation": current_station,
        "position": {
            "latitude": candidate.latitude,
            "longitude": candidate.longitude,
            "bearing": vehicle.bearing,
            "speed": vehicle.speed,
            "source": candidate.position_source,
        },
        "distanceMeters": candidate.distance_meters,
        "lastUpdated": format_timestamp(vehicle.timestamp) if vehicle.timestamp else _now_iso(),
        "trip": to_json(candidate.trip),
    }


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    return success(
        {
            "status": "ok",
            "version": __version__,
            "gtfs": state.gtfs_loader.get_stats(),
            "feedCache": to_json(state.feed_client.get_cache_stats()),
        }
    )


@router.get("/routes")
async def list_routes(request: Request):
    routes = [
        {
            "id": route.route_id,
            "shortName": route.short_name,
            "longName": route.long_name,
            "color": route.color,
            "textColor": route.text_color,
        }
        for route in request.app.state.gtfs_loader.get_all_routes()
    ]
    return success({"routes": routes})


@router.get("/stations/nearest")
async def nearest_stations(
    request: Request,
    lat: float = Query(...),
    lon: float = Query(...),
    limit: int = Query(5, ge=1, le=50),
):
    stations = [
        {
            "stopId": station.stop.stop_id,
            "name": station.stop.name,
            "latitude": station.stop.latitude,
            "longitude": station.stop.longitude,
            "lines": station.stop.lines,
            "distance": round(station.distance),
        }
        for station in request.app.state.gtfs_loader.find_nearest_stations(lat, lon, limit)
    ]
    return success({"stations": stations})


@router.post("/trains/nearest")
async def nearest_trains(body: NearestTrainsRequest, request: Request):
    state = request.app.state
    candidates = await state.train_finder.find_nearest_trains(
        body.latitude,
        body.longitude,
        body.line_code,
        direction=body.direction,
        radius_meters=body.radius_meters,
    )
    route_info = state.gtfs_loader.get_route_by_line_code(body.line_code) if candidates else None
    route = route_info.route if route_info else None
    trains = [serialize_candidate(c, route, body.line_code) for c in candidates]
    return success(
        {
            "trains": trains,
            "totalFound": len(trains),
            "message": None if trains else "No trains found",
        }
    )


@router.post("/trains/identify")
async def identify_trains(body: IdentifyTrainsRequest, request: Request):
    result = await request.app.state.train_identifier.identify_trains(
        body.line_code,
        body.direction,
        body.stop_id,
        limit=body.limit,
        reference_time=body.timestamp,
    )
    return success(to_json(result))


@router.get("/trains/{line_code}/{vehicle_id:path}")
async def get_train(line_code: str, vehicle_id: str, request: Request):
    trip = await request.app.state.trip_builder.build_trip(vehicle_id, line_code)
    if trip is None:
        raise NoDataError(f"Train {vehicle_id} not found on line {line_code}")
    return success(to_json(trip))


async def handle_domain_error(request: Request, exc: WhatTrainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return error_response(exc.status_code, exc.message)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    )
    logger.warning(f"{request.method} {request.url.path} invalid request: {details}")
    return error_response(400, f"Invalid request data: {details}")


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} unhandled error: {exc}", exc_info=exc)
    return error_response(500, "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    *,
    loader: Optional[GTFSLoader] = None,
    feed_client: Optional[MTAFeedClient] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Application settings; read from the environment if omitted.
        loader: Pre-loaded static schedule. Loaded on startup if omitted.
        feed_client: Real-time feed client. Created (and closed on shutdown) if omitted.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        gtfs_loader = loader
        if gtfs_loader is None:
            gtfs_loader = GTFSLoader()
            if settings.gtfs_data_dir:
                await asyncio.to_thread(gtfs_loader.load_from_directory, settings.gtfs_data_dir)
            else:
                await asyncio.to_thread(gtfs_loader.load_from_url, settings.gtfs_url)

        client = feed_client or MTAFeedClient(
            cache_ttl=settings.cache_ttl_seconds,
            rate_limit=settings.rate_limit_seconds,
            timeout=settings.feed_timeout_seconds,
            api_key=settings.mta_api_key,
        )
        trip_builder = TripBuilder(client, gtfs_loader)

        app.state.gtfs_loader = gtfs_loader
        app.state.feed_client = client
        app.state.trip_builder = trip_builder
        app.state.train_finder = TrainFinder(
            client, gtfs_loader, trip_builder, default_radius_meters=settings.default_radius_meters
        )
        app.state.train_identifier = TrainIdentifier(client)
        logger.info(f"WhatTrain API ready ({len(client.supported_lines)} lines)")

        yield

        if feed_client is None:
            await client.aclose()
        logger.info("WhatTrain API shut down")

    app = FastAPI(title="WhatTrain API", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        logger.info(f"{request.method} {request.url.path} - Request received")
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} - {response.status_code} in {duration_ms:.0f}ms")
        return response

    app.add_exception_handler(WhatTrainError, handle_domain_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app
