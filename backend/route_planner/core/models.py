"""Domain types shared by the planner core: points, stops, path segments."""

from dataclasses import dataclass, field
from typing import ClassVar, NamedTuple

from route_planner.core.errors import ConfigurationError

# Type tags used by the delivery API (Portuguese) and their English aliases
PICKUP_TAGS = {"coleta", "pickup"}
DROPOFF_TAGS = {"entrega", "dropoff"}


class LatLng(NamedTuple):
    lat: float
    lng: float

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class PickupStop:
    role: ClassVar[str] = "pickup"

    id: int
    name: str
    address: str
    location: LatLng
    drops_off_in: frozenset[int] = frozenset()  # dropoff ids that must come after

    @property
    def depends_on(self) -> frozenset[int]:
        return self.drops_off_in


@dataclass(frozen=True)
class DropoffStop:
    role: ClassVar[str] = "dropoff"

    id: int
    name: str
    address: str
    location: LatLng
    picked_up_in: frozenset[int] = frozenset()  # pickup ids that must come before

    @property
    def depends_on(self) -> frozenset[int]:
        return self.picked_up_in


Stop = PickupStop | DropoffStop


@dataclass(frozen=True)
class SessionConfig:
    """Identifies one planning session: the company key and the order being routed."""

    company_key: str
    order_id: int

    def __post_init__(self) -> None:
        if not isinstance(self.company_key, str) or not self.company_key.strip():
            raise ConfigurationError("company key must be a non-empty string")
        if isinstance(self.order_id, bool) or not isinstance(self.order_id, int) or self.order_id <= 0:
            raise ConfigurationError("order id must be a positive integer")


@dataclass(frozen=True)
class ResolvedPath:
    """Geometry returned by the directions provider for one pair of stops."""

    geometry: tuple[LatLng, ...]
    distance_m: float
    duration_s: float
    static_duration_s: float


@dataclass(frozen=True)
class PathSegment:
    from_id: int
    to_id: int
    waypoints: tuple[LatLng, ...]
    geometry: tuple[LatLng, ...]
    distance_m: float
    duration_s: float
    static_duration_s: float

    @property
    def key(self) -> tuple[int, int]:
        return (self.from_id, self.to_id)

    @classmethod
    def from_resolved(
        cls,
        from_id: int,
        to_id: int,
        resolved: ResolvedPath,
        waypoints: tuple[LatLng, ...] = (),
    ) -> "PathSegment":
        return cls(
            from_id=from_id,
            to_id=to_id,
            waypoints=tuple(waypoints),
            geometry=tuple(resolved.geometry),
            distance_m=resolved.distance_m,
            duration_s=resolved.duration_s,
            static_duration_s=resolved.static_duration_s,
        )


@dataclass(frozen=True)
class FinalizedRoute:
    encoded_polyline: str
    path: list[LatLng]
    ordered_locations: list[LatLng]
    distance_m: float
    duration_s: float
    viewport: tuple[LatLng, LatLng]  # (south-west, north-east)


@dataclass
class RouteStops:
    """Stops for one order as returned by the order lookup service."""

    order_id: int
    origin: Stop | None
    destination: Stop | None
    ordered_stops: list[Stop] = field(default_factory=list)


def _format_address(raw) -> str:
    """Flatten a structured address like '{street, number, neighborhood, city, state}'."""
    if raw is None:
        return ""
    if not isinstance(raw, dict):
        return str(raw).strip()
    street = ", ".join(
        str(raw[k]).strip() for k in ("street", "number", "neighborhood") if raw.get(k)
    )
    city = " - ".join(str(raw[k]).strip() for k in ("city", "state") if raw.get(k))
    return ", ".join(part for part in (street, city) if part)


def _parse_location(raw) -> LatLng:
    if not isinstance(raw, dict):
        raise ConfigurationError("stop location must be an object with lat/lng")
    try:
        lat = float(raw.get("lat", raw.get("latitude")))
        lng = float(raw.get("lng", raw.get("lon", raw.get("longitude"))))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid stop location: {raw!r}") from e
    return LatLng(lat, lng)


def _parse_ids(raw, field_name: str, stop_id: int) -> frozenset[int]:
    if not isinstance(raw, list):
        raise ConfigurationError(f"stop {stop_id}: '{field_name}' must be a list of stop ids")
    try:
        return frozenset(int(x) for x in raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"stop {stop_id}: '{field_name}' holds a non-integer id") from e


def stop_from_payload(item: dict) -> Stop:
    """Build the stop variant matching the payload's type tag."""
    if not isinstance(item, dict):
        raise ConfigurationError(f"stop must be an object, got {type(item).__name__}")
    try:
        stop_id = int(item["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError("stop is missing a valid integer id") from e

    tag = str(item.get("type", "")).strip().lower()
    name = str(item.get("name") or "").strip()
    address = _format_address(item.get("address"))
    location = _parse_location(item.get("location"))

    if tag in PICKUP_TAGS:
        deps = _parse_ids(item.get("dropsOffIn", item.get("drops_off_in")), "dropsOffIn", stop_id)
        return PickupStop(stop_id, name, address, location, deps)
    if tag in DROPOFF_TAGS:
        deps = _parse_ids(item.get("pickedUpIn", item.get("picked_up_in")), "pickedUpIn", stop_id)
        return DropoffStop(stop_id, name, address, location, deps)
    raise ConfigurationError(f"stop {stop_id}: unknown stop type {tag!r}")
