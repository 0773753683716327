"""Async client for the Google Routes API (directions/v2:computeRoutes)."""

import asyncio
import logging
from collections.abc import Sequence

import httpx
import polyline

from route_planner.config import settings
from route_planner.core.errors import PathResolutionError
from route_planner.core.models import LatLng, ResolvedPath

logger = logging.getLogger(__name__)

COMPUTE_ROUTES_PATH = "/directions/v2:computeRoutes"
FIELD_MASK = "routes.distanceMeters,routes.duration,routes.staticDuration,routes.polyline.encodedPolyline"

# Retry configuration
MAX_RETRIES = 3
RETRY_BACKOFF = [2, 4, 8]  # seconds between retries


def _parse_duration(raw) -> float:
    """Parse protobuf durations like '165s' or '12.5s' into seconds."""
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    if text.endswith("s"):
        text = text[:-1]
    try:
        return float(text)
    except ValueError:
        logger.debug("Unparseable duration %r", raw)
        return 0.0


def _waypoint(point: LatLng, via: bool = False) -> dict:
    body = {"location": {"latLng": {"latitude": point.lat, "longitude": point.lng}}}
    if via:
        body["via"] = True
    return body


class GoogleRoutesClient:
    """Resolves the road path between two points, optionally through manual waypoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: Sequence[float] = RETRY_BACKOFF,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.routes_api_base_url,
            timeout=settings.request_timeout_seconds,
            headers={
                "X-Goog-Api-Key": api_key if api_key is not None else settings.google_maps_api_key,
                "X-Goog-FieldMask": FIELD_MASK,
            },
            transport=transport,
        )
        self._retry_backoff = list(retry_backoff)

    async def close(self) -> None:
        await self._client.aclose()

    def _build_request(self, start: LatLng, end: LatLng, waypoints: Sequence[LatLng]) -> dict:
        body = {
            "origin": _waypoint(start),
            "destination": _waypoint(end),
            "travelMode": "DRIVE",
            "routingPreference": "TRAFFIC_AWARE",
            "polylineQuality": "OVERVIEW",
            "routeModifiers": {
                "avoidTolls": False,
                "avoidHighways": False,
                "avoidFerries": False,
            },
            "languageCode": settings.language_code,
            "units": "METRIC",
        }
        if waypoints:
            # Manual waypoints shape the path; they are not stopovers
            body["intermediates"] = [_waypoint(p, via=True) for p in waypoints]
        return body

    async def _post_with_retry(self, body: dict, label: str) -> httpx.Response:
        """POST with retry and backoff on timeouts, connect errors and 5xx."""
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._client.post(COMPUTE_ROUTES_PATH, json=body)
                resp.raise_for_status()
                return resp
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    wait = self._retry_backoff[attempt]
                    logger.warning(
                        "%s attempt %d/%d failed (%s), retrying in %ss",
                        label, attempt + 1, MAX_RETRIES + 1, type(e).__name__, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("%s failed after %d attempts: %s", label, MAX_RETRIES + 1, e)
                    raise PathResolutionError(f"{label}: directions service unreachable") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status >= 500 and attempt < MAX_RETRIES:
                    wait = self._retry_backoff[attempt]
                    logger.warning(
                        "%s attempt %d/%d got HTTP %d, retrying in %ss",
                        label, attempt + 1, MAX_RETRIES + 1, status, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("Directions request %s failed: HTTP %d", label, status)
                    raise PathResolutionError(f"{label}: directions service returned HTTP {status}") from e
            except httpx.HTTPError as e:
                logger.error("Directions request %s failed: %s", label, e)
                raise PathResolutionError(f"{label}: {e}") from e
        raise PathResolutionError(f"{label}: directions service unreachable")

    async def resolve_path(
        self, start: LatLng, end: LatLng, waypoints: Sequence[LatLng] = ()
    ) -> ResolvedPath:
        label = f"route ({start.lat:.5f},{start.lng:.5f})->({end.lat:.5f},{end.lng:.5f})"
        resp = await self._post_with_retry(self._build_request(start, end, waypoints), label)

        try:
            data = resp.json()
        except ValueError as e:
            raise PathResolutionError(f"{label}: invalid JSON from directions service") from e

        routes = data.get("routes") if isinstance(data, dict) else None
        if not routes:
            raise PathResolutionError(f"{label}: no route found")
        route = routes[0]
        encoded = (route.get("polyline") or {}).get("encodedPolyline", "")
        try:
            geometry = tuple(LatLng(lat, lng) for lat, lng in polyline.decode(encoded))
        except (TypeError, ValueError, IndexError) as e:
            raise PathResolutionError(f"{label}: undecodable polyline") from e

        logger.debug("Resolved %s: %d pts, %s m", label, len(geometry), route.get("distanceMeters"))
        return ResolvedPath(
            geometry=geometry,
            distance_m=float(route.get("distanceMeters", 0) or 0),
            duration_s=_parse_duration(route.get("duration")),
            static_duration_s=_parse_duration(route.get("staticDuration")),
        )
