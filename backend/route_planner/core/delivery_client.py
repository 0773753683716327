"""Async client for the company delivery API: order stop lookup and route persistence."""

import asyncio
import logging
from collections.abc import Sequence

import httpx

from route_planner.config import settings
from route_planner.core.errors import ConfigurationError
from route_planner.core.models import LatLng, RouteStops, SessionConfig, Stop, stop_from_payload

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_BACKOFF = [2, 4, 8]  # seconds between retries


def _error_message(resp: httpx.Response) -> str:
    """Pull `message` out of an error body like {"statusCode": 404, "message": "..."}."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("message"):
        message = data["message"]
        return "; ".join(message) if isinstance(message, list) else str(message)
    return f"HTTP {resp.status_code}"


def _same_stop(a: Stop, b: Stop) -> bool:
    return a.id == b.id and a.role == b.role and a.location == b.location


class DeliveryApiClient:
    """Fetches the best stop order for an order and saves the finalized route."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: Sequence[float] = RETRY_BACKOFF,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.delivery_api_base_url,
            timeout=settings.request_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._retry_backoff = list(retry_backoff)

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, path: str, params: dict, label: str) -> httpx.Response:
        """GET with retry on timeouts and connect errors; error responses are returned as is."""
        for attempt in range(MAX_RETRIES + 1):
            try:
                return await self._client.get(path, params=params)
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt >= MAX_RETRIES:
                    logger.error("%s failed after %d attempts: %s", label, MAX_RETRIES + 1, e)
                    raise
                wait = self._retry_backoff[attempt]
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %ss",
                    label, attempt + 1, MAX_RETRIES + 1, type(e).__name__, wait,
                )
                await asyncio.sleep(wait)
        raise RuntimeError("unreachable")

    async def get_route_stops(self, config: SessionConfig) -> RouteStops:
        """Fetch origin, final destination and upstream-optimized stop order for an order."""
        label = f"stops for order {config.order_id}"
        resp = await self._get_with_retry(
            f"/rota-de-entrega/{config.company_key}/melhor-rota",
            {"idOrdem": config.order_id},
            label,
        )
        if resp.is_error:
            message = _error_message(resp)
            logger.error("Failed to fetch %s: HTTP %d %s", label, resp.status_code, message)
            raise ConfigurationError(message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ConfigurationError(f"invalid JSON in {label}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"unexpected payload for {label}")

        ordered = data.get("orderedPoints", [])
        if not isinstance(ordered, list):
            raise ConfigurationError("'orderedPoints' must be a list")

        origin = data.get("origin")
        destination = data.get("destination")
        try:
            order_id = int(data.get("orderId", config.order_id))
        except (TypeError, ValueError) as e:
            raise ConfigurationError("invalid order id in lookup response") from e

        final = stop_from_payload(destination) if destination else None
        ordered_stops = [stop_from_payload(item) for item in ordered]
        # the optimizer lists the final destination as the last ordered point too
        if final is not None and ordered_stops and _same_stop(ordered_stops[-1], final):
            ordered_stops.pop()

        stops = RouteStops(
            order_id=order_id,
            origin=stop_from_payload(origin) if origin else None,
            destination=final,
            ordered_stops=ordered_stops,
        )
        logger.info(
            "Fetched %d stops for order %d (origin=%s, destination=%s)",
            len(stops.ordered_stops), order_id,
            stops.origin.id if stops.origin else None,
            stops.destination.id if stops.destination else None,
        )
        return stops

    async def save_route(
        self,
        config: SessionConfig,
        encoded_polyline: str,
        ordered_locations: list[LatLng],
    ) -> bool:
        """Persist the finalized route. Returns False when the API refuses or is unreachable."""
        payload = {
            "idOrdem": config.order_id,
            "encodedPolyline": encoded_polyline,
            "orderedPoints": [p.to_dict() for p in ordered_locations],
        }
        try:
            resp = await self._client.post(
                f"/rota-de-entrega/{config.company_key}/salvar-rota", json=payload,
            )
        except httpx.HTTPError as e:
            logger.error("Failed to save route for order %d: %s", config.order_id, e)
            return False

        if resp.is_error:
            logger.error(
                "Delivery API refused route for order %d: HTTP %d %s",
                config.order_id, resp.status_code, _error_message(resp),
            )
            return False
        logger.info("Saved route for order %d (%d points)", config.order_id, len(ordered_locations))
        return True
