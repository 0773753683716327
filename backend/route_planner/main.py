"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from route_planner.api import sessions, ws
from route_planner.config import settings
from route_planner.core.broadcaster import Broadcaster
from route_planner.core.delivery_client import DeliveryApiClient
from route_planner.core.directions_client import GoogleRoutesClient
from route_planner.core.errors import (
    CommitSupersededError,
    ConfigurationError,
    IncompletePathError,
    InvalidOperationError,
    PathResolutionError,
    PrecedenceViolation,
    RoutePlanningError,
    SessionNotFoundError,
)
from route_planner.core.planner import RoutePlanner

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    PrecedenceViolation: 409,
    IncompletePathError: 409,
    CommitSupersededError: 409,
    PathResolutionError: 502,
    InvalidOperationError: 422,
    SessionNotFoundError: 404,
    ConfigurationError: 400,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    delivery = DeliveryApiClient()
    directions = GoogleRoutesClient()
    broadcaster = Broadcaster()
    planner = RoutePlanner(delivery, directions, broadcaster)

    # Wire up API modules
    sessions.planner = planner
    ws.planner = planner
    ws.broadcaster = broadcaster

    if not settings.google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not set - directions requests will be rejected")
    logger.info("Route planner started (commit mode: %s)", settings.commit_mode)

    yield

    # Shutdown
    planner.close()
    await directions.close()
    await delivery.close()
    logger.info("Route planner shut down")


app = FastAPI(
    title="Delivery Route Planner",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoutePlanningError)
async def planning_error_handler(request: Request, exc: RoutePlanningError):
    status = 500
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            status = ERROR_STATUS[cls]
            break
    if isinstance(exc, ConfigurationError) and exc.status_code:
        # Lookup failures keep the upstream 4xx; upstream 5xx becomes 502
        status = exc.status_code if exc.status_code < 500 else 502
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(httpx.TransportError)
async def upstream_error_handler(request: Request, exc: httpx.TransportError):
    logger.error("Upstream request failed: %s", exc)
    return JSONResponse(status_code=502, content={"detail": "Upstream service unavailable"})


app.include_router(sessions.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
