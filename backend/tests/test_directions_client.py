"""Tests for GoogleRoutesClient against a mocked Routes API."""

import asyncio
import json

import httpx
import polyline
import pytest

from route_planner.core.directions_client import GoogleRoutesClient, _parse_duration
from route_planner.core.errors import PathResolutionError
from route_planner.core.models import LatLng

START = LatLng(-27.5954, -48.5480)
END = LatLng(-27.6001, -48.5210)
GEOMETRY = [(-27.5954, -48.548), (-27.598, -48.535), (-27.6001, -48.521)]


def route_response(**overrides) -> dict:
    route = {
        "distanceMeters": 3120,
        "duration": "415s",
        "staticDuration": "380s",
        "polyline": {"encodedPolyline": polyline.encode(GEOMETRY)},
    }
    route.update(overrides)
    return {"routes": [route]}


def make_client(handler) -> GoogleRoutesClient:
    return GoogleRoutesClient(
        api_key="test-key",
        base_url="https://routes.test",
        transport=httpx.MockTransport(handler),
        retry_backoff=[0, 0, 0],
    )


def test_parse_duration():
    assert _parse_duration("415s") == 415.0
    assert _parse_duration("12.5s") == 12.5
    assert _parse_duration(30) == 30.0
    assert _parse_duration(None) == 0.0
    assert _parse_duration("garbage") == 0.0


def test_resolve_path_decodes_route():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=route_response())

    async def scenario():
        client = make_client(handler)
        try:
            return await client.resolve_path(START, END)
        finally:
            await client.close()

    resolved = asyncio.run(scenario())
    assert resolved.distance_m == 3120
    assert resolved.duration_s == 415.0
    assert resolved.static_duration_s == 380.0
    assert len(resolved.geometry) == 3
    assert resolved.geometry[0].lat == pytest.approx(-27.5954)
    assert resolved.geometry[-1].lng == pytest.approx(-48.521)

    request = requests[0]
    assert request.url.path == "/directions/v2:computeRoutes"
    assert request.headers["X-Goog-Api-Key"] == "test-key"
    body = json.loads(request.content)
    assert body["origin"]["location"]["latLng"] == {"latitude": START.lat, "longitude": START.lng}
    assert body["travelMode"] == "DRIVE"
    assert "intermediates" not in body


def test_waypoints_sent_as_via_intermediates():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=route_response())

    async def scenario():
        client = make_client(handler)
        try:
            await client.resolve_path(START, END, [LatLng(-27.597, -48.540)])
        finally:
            await client.close()

    asyncio.run(scenario())
    intermediates = bodies[0]["intermediates"]
    assert len(intermediates) == 1
    assert intermediates[0]["via"] is True
    assert intermediates[0]["location"]["latLng"]["latitude"] == -27.597


def test_server_errors_are_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, json={"error": {"message": "backend error"}})
        return httpx.Response(200, json=route_response())

    async def scenario():
        client = make_client(handler)
        try:
            return await client.resolve_path(START, END)
        finally:
            await client.close()

    resolved = asyncio.run(scenario())
    assert len(attempts) == 3
    assert resolved.distance_m == 3120


def test_client_error_is_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(403, json={"error": {"message": "API key not valid"}})

    async def scenario():
        client = make_client(handler)
        try:
            await client.resolve_path(START, END)
        finally:
            await client.close()

    with pytest.raises(PathResolutionError, match="HTTP 403"):
        asyncio.run(scenario())
    assert len(attempts) == 1


def test_connect_errors_exhaust_retries():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        client = make_client(handler)
        try:
            await client.resolve_path(START, END)
        finally:
            await client.close()

    with pytest.raises(PathResolutionError, match="unreachable"):
        asyncio.run(scenario())
    assert len(attempts) == 4


def test_empty_routes_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    async def scenario():
        client = make_client(handler)
        try:
            await client.resolve_path(START, END)
        finally:
            await client.close()

    with pytest.raises(PathResolutionError, match="no route"):
        asyncio.run(scenario())
