"""Stop ordering with pickup/dropoff precedence rules."""

import logging
from dataclasses import dataclass

from route_planner.core.errors import (
    ConfigurationError,
    InvalidOperationError,
    PrecedenceViolation,
)
from route_planner.core.models import DropoffStop, PickupStop, Stop

logger = logging.getLogger(__name__)

DELIVERY_BEFORE_PICKUP = "delivery scheduled before its pickup"
PICKUP_AFTER_DELIVERY = "pickup scheduled after its delivery"


def _stop_violation(stop: Stop, positions: dict[int, int]) -> PrecedenceViolation | None:
    """Check one stop's own dependency set against the positions of the order."""
    pos = positions[stop.id]
    if isinstance(stop, DropoffStop):
        for pickup_id in sorted(stop.picked_up_in):
            if positions[pickup_id] > pos:
                return PrecedenceViolation(DELIVERY_BEFORE_PICKUP, stop.id, pickup_id)
    else:
        for dropoff_id in sorted(stop.drops_off_in):
            if positions[dropoff_id] < pos:
                return PrecedenceViolation(PICKUP_AFTER_DELIVERY, stop.id, dropoff_id)
    return None


def find_violation(order: list[Stop], moved_id: int | None = None) -> PrecedenceViolation | None:
    """Return the first precedence violation in `order`, checking `moved_id` first."""
    positions = {s.id: i for i, s in enumerate(order)}
    if moved_id is not None:
        moved = order[positions[moved_id]]
        violation = _stop_violation(moved, positions)
        if violation:
            return violation
    for stop in order:
        if stop.id == moved_id:
            continue
        violation = _stop_violation(stop, positions)
        if violation:
            return violation
    return None


def validate_stop_set(stops: list[Stop]) -> None:
    """Check ids are unique and every dependency points at a stop of the opposite role."""
    by_id: dict[int, Stop] = {}
    for stop in stops:
        if stop.id in by_id:
            raise ConfigurationError(f"duplicate stop id {stop.id}")
        by_id[stop.id] = stop

    for stop in stops:
        expected = DropoffStop if isinstance(stop, PickupStop) else PickupStop
        for dep_id in stop.depends_on:
            dep = by_id.get(dep_id)
            if dep is None:
                raise ConfigurationError(
                    f"stop {stop.id} references unknown stop {dep_id}"
                )
            if not isinstance(dep, expected):
                raise ConfigurationError(
                    f"stop {stop.id} ({stop.role}) references stop {dep_id} of the same role"
                )


@dataclass(frozen=True)
class RouteSequence:
    """Origin (fixed first), movable stops, final destination (fixed last)."""

    origin: Stop | None
    stops: tuple[Stop, ...]
    destination: Stop | None

    @classmethod
    def build(
        cls,
        origin: Stop | None,
        ordered_stops: list[Stop],
        destination: Stop | None,
    ) -> "RouteSequence":
        """Validate an initial order from the lookup service."""
        if origin is None and destination is None and not ordered_stops:
            raise ConfigurationError("route has no stops")
        if origin is None and destination is not None and not ordered_stops:
            raise ConfigurationError("route has a final destination but no origin and no stops")
        if destination is not None and not isinstance(destination, DropoffStop):
            raise ConfigurationError(f"final destination {destination.id} must be a dropoff stop")

        seq = cls(origin, tuple(ordered_stops), destination)
        validate_stop_set(seq.order)
        violation = find_violation(seq.order)
        if violation:
            raise ConfigurationError(
                f"initial order is inconsistent: stop {violation.stop_id} {violation} "
                f"(stop {violation.conflicting_id})"
            )
        return seq

    @property
    def order(self) -> list[Stop]:
        full = list(self.stops)
        if self.origin is not None:
            full.insert(0, self.origin)
        if self.destination is not None:
            full.append(self.destination)
        return full

    def pairs(self) -> list[tuple[int, int]]:
        """Adjacent (from_id, to_id) pairs of the full order."""
        ids = [s.id for s in self.order]
        return list(zip(ids, ids[1:]))

    def index_of(self, stop_id: int) -> int:
        """Position of a movable stop; origin and destination are not movable."""
        for i, stop in enumerate(self.stops):
            if stop.id == stop_id:
                return i
        raise InvalidOperationError(f"stop {stop_id} is not a movable stop of this route")

    def moved(self, stop_id: int, new_index: int) -> "RouteSequence":
        """Drag-and-drop move: take the stop out and reinsert it at `new_index`.

        Raises PrecedenceViolation when the candidate order breaks a
        pickup/dropoff dependency; self is never modified.
        """
        old_index = self.index_of(stop_id)
        if not 0 <= new_index < len(self.stops):
            raise InvalidOperationError(
                f"position {new_index} is out of range (0..{len(self.stops) - 1})"
            )
        if new_index == old_index:
            return self

        stops = list(self.stops)
        stop = stops.pop(old_index)
        stops.insert(new_index, stop)
        candidate = RouteSequence(self.origin, tuple(stops), self.destination)

        violation = find_violation(candidate.order, moved_id=stop_id)
        if violation:
            logger.warning(
                "Rejected move of stop %d to %d: %s (stop %d)",
                stop_id, new_index, violation, violation.conflicting_id,
            )
            raise violation
        return candidate
