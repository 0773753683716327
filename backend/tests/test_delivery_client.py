"""Tests for DeliveryApiClient (stop lookup and route persistence)."""

import asyncio
import json

import httpx
import pytest

from route_planner.core.delivery_client import DeliveryApiClient
from route_planner.core.engine import RouteOrderingEngine
from route_planner.core.errors import ConfigurationError
from route_planner.core.models import DropoffStop, LatLng, PickupStop, ResolvedPath, SessionConfig
from route_planner.core.sequence import RouteSequence

CONFIG = SessionConfig("abc123", 42)

LOOKUP = {
    "orderId": 42,
    "origin": {
        "id": 1, "name": "Depósito", "type": "coleta", "dropsOffIn": [3],
        "address": {"street": "Rua das Flores", "number": "100", "neighborhood": "Centro",
                    "city": "Florianópolis", "state": "SC"},
        "location": {"lat": -27.5954, "lng": -48.548},
    },
    "destination": {
        "id": 9, "name": "Cliente final", "type": "entrega", "pickedUpIn": [],
        "address": "Av. Beira Mar, 500", "location": {"lat": -27.58, "lng": -48.54},
    },
    "orderedPoints": [
        {"id": 2, "name": "Fornecedor", "type": "coleta", "dropsOffIn": [3],
         "address": None, "location": {"lat": -27.60, "lng": -48.52}},
        {"id": 3, "name": "Cliente", "type": "entrega", "pickedUpIn": [1, 2],
         "address": {"city": "São José", "state": "SC"}, "location": {"lat": -27.61, "lng": -48.63}},
    ],
}


def run_with(handler, coro_factory):
    async def scenario():
        client = DeliveryApiClient(
            base_url="http://delivery.test/v2",
            transport=httpx.MockTransport(handler),
            retry_backoff=[0, 0, 0],
        )
        try:
            return await coro_factory(client)
        finally:
            await client.close()

    return asyncio.run(scenario())


def test_get_route_stops_parses_roles():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=LOOKUP)

    stops = run_with(handler, lambda c: c.get_route_stops(CONFIG))

    assert requests[0].url.path == "/v2/rota-de-entrega/abc123/melhor-rota"
    assert requests[0].url.params["idOrdem"] == "42"
    assert stops.order_id == 42
    assert isinstance(stops.origin, PickupStop)
    assert stops.origin.drops_off_in == frozenset({3})
    assert stops.origin.address == "Rua das Flores, 100, Centro, Florianópolis - SC"
    assert isinstance(stops.destination, DropoffStop)
    assert stops.destination.address == "Av. Beira Mar, 500"
    assert [s.id for s in stops.ordered_stops] == [2, 3]
    assert stops.ordered_stops[1].picked_up_in == frozenset({1, 2})
    assert stops.ordered_stops[1].address == "São José - SC"
    assert stops.ordered_stops[0].location == LatLng(-27.60, -48.52)


def test_missing_destination_is_allowed():
    payload = dict(LOOKUP, destination=None)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    stops = run_with(handler, lambda c: c.get_route_stops(CONFIG))
    assert stops.destination is None


def test_lookup_error_carries_status_and_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"statusCode": 404, "message": "Ordem não encontrada"})

    with pytest.raises(ConfigurationError, match="Ordem não encontrada") as exc_info:
        run_with(handler, lambda c: c.get_route_stops(CONFIG))
    assert exc_info.value.status_code == 404


def test_unknown_stop_type_is_configuration_error():
    payload = dict(LOOKUP, orderedPoints=[{"id": 5, "type": "parada", "location": {"lat": 0, "lng": 0}}])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(ConfigurationError, match="unknown stop type"):
        run_with(handler, lambda c: c.get_route_stops(CONFIG))


def test_network_errors_pass_through():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(httpx.ConnectError):
        run_with(handler, lambda c: c.get_route_stops(CONFIG))


def test_save_route_posts_payload():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v2/rota-de-entrega/abc123/salvar-rota"
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={})

    saved = run_with(
        handler,
        lambda c: c.save_route(CONFIG, "abc~def", [LatLng(-27.5, -48.5), LatLng(-27.6, -48.6)]),
    )
    assert saved is True
    assert bodies[0] == {
        "idOrdem": 42,
        "encodedPolyline": "abc~def",
        "orderedPoints": [{"lat": -27.5, "lng": -48.5}, {"lat": -27.6, "lng": -48.6}],
    }


def test_save_route_failure_returns_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "erro interno"})

    saved = run_with(handler, lambda c: c.save_route(CONFIG, "x", []))
    assert saved is False


FINAL_IN_ORDER = dict(
    LOOKUP,
    destination=LOOKUP["orderedPoints"][1],
)


class StraightLines:
    async def resolve_path(self, start, end, waypoints=()):
        return ResolvedPath(geometry=(start, end), distance_m=1.0, duration_s=1.0, static_duration_s=1.0)


def test_destination_repeated_as_last_ordered_point_is_dropped():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=FINAL_IN_ORDER)

    stops = run_with(handler, lambda c: c.get_route_stops(CONFIG))
    assert stops.destination.id == 3
    assert [s.id for s in stops.ordered_stops] == [2]


def test_lookup_with_destination_in_order_opens_route():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=FINAL_IN_ORDER)

    async def open_route(client):
        stops = await client.get_route_stops(CONFIG)
        engine = RouteOrderingEngine(StraightLines())
        await engine.initialize(stops.origin, stops.ordered_stops, stops.destination)
        return engine

    engine = run_with(handler, open_route)
    assert [s.id for s in engine.order] == [1, 2, 3]
    assert [s.key for s in engine.segments] == [(1, 2), (2, 3)]


def test_different_stop_with_destination_id_is_still_duplicate():
    moved = dict(LOOKUP["orderedPoints"][1], location={"lat": -27.70, "lng": -48.70})
    payload = dict(FINAL_IN_ORDER, orderedPoints=[LOOKUP["orderedPoints"][0], moved])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    stops = run_with(handler, lambda c: c.get_route_stops(CONFIG))
    assert [s.id for s in stops.ordered_stops] == [2, 3]
    with pytest.raises(ConfigurationError, match="duplicate stop id 3"):
        RouteSequence.build(stops.origin, stops.ordered_stops, stops.destination)
