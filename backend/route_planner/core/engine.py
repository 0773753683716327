"""Route ordering engine: stop order, path segments, commits and manual edits."""

import asyncio
import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import polyline
from shapely.geometry import MultiPoint

from route_planner.core.errors import (
    CommitSupersededError,
    IncompletePathError,
    InvalidOperationError,
    PathResolutionError,
)
from route_planner.core.models import (
    FinalizedRoute,
    LatLng,
    PathSegment,
    ResolvedPath,
    Stop,
)
from route_planner.core.sequence import RouteSequence
from route_planner.core.simplifier import simplify

logger = logging.getLogger(__name__)

# Google encoded-polyline precision (1e-5 degrees)
POLYLINE_PRECISION = 5

SegmentKey = tuple[int, int]


class DirectionsProvider(Protocol):
    async def resolve_path(
        self, start: LatLng, end: LatLng, waypoints: Sequence[LatLng] = ()
    ) -> ResolvedPath: ...


class EngineState(str, enum.Enum):
    LOADING = "loading"
    READY = "ready"
    REORDERING = "reordering"  # accepted moves not yet committed
    RECONCILING = "reconciling"  # commit batch in flight
    EDITING = "editing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReorderResult:
    accepted: bool
    dirty: frozenset[int]


@dataclass(frozen=True)
class CommitResult:
    resolved: tuple[SegmentKey, ...]
    reused: tuple[SegmentKey, ...]
    released: tuple[int, ...]


class RouteOrderingEngine:
    """Owns one route's stop order and the path segments between adjacent stops.

    Segments are keyed by (from_id, to_id). A commit only asks the directions
    provider for pairs that were not adjacent before; the rest are kept as the
    same objects. Every discarded or replaced segment is reported once through
    `on_release(segment)`, after the map that drops it has been installed.
    Several segments can end at the same stop over time, so listeners match
    on the full (from_id, to_id) key.

    After `close()` the engine is terminal: `segments` is empty and every
    operation raises InvalidOperationError.
    """

    def __init__(
        self,
        directions: DirectionsProvider,
        on_release: Callable[[PathSegment], None] | None = None,
        auto_commit: bool = False,
    ) -> None:
        self._directions = directions
        self._on_release = on_release
        self.auto_commit = auto_commit

        self._committed: RouteSequence | None = None
        self._pending: RouteSequence | None = None
        self._segments: dict[SegmentKey, PathSegment] = {}
        self._dirty: set[int] = set()
        self._inflight: asyncio.Task | None = None
        self._editing_id: int | None = None
        self._closed = False

    # ---- views ----

    @property
    def state(self) -> EngineState:
        if self._closed:
            return EngineState.CLOSED
        if self._committed is None:
            return EngineState.LOADING
        if self._editing_id is not None:
            return EngineState.EDITING
        if self._inflight is not None and not self._inflight.done():
            return EngineState.RECONCILING
        if self._pending != self._committed:
            return EngineState.REORDERING
        return EngineState.READY

    @property
    def origin(self) -> Stop | None:
        return self._require_loaded().origin

    @property
    def destination(self) -> Stop | None:
        return self._require_loaded().destination

    @property
    def stops(self) -> list[Stop]:
        """Movable stops in their current (possibly uncommitted) order."""
        return list(self._require_loaded().stops)

    @property
    def order(self) -> list[Stop]:
        return self._require_loaded().order

    @property
    def segments(self) -> list[PathSegment]:
        """Committed segments in committed order."""
        if self._committed is None:
            return []
        return [self._segments[p] for p in self._committed.pairs()]

    @property
    def dirty(self) -> frozenset[int]:
        return frozenset(self._dirty)

    @property
    def editing_id(self) -> int | None:
        return self._editing_id

    def segment_for(self, stop_id: int) -> PathSegment:
        """The committed segment ending at `stop_id`."""
        self._require_loaded()
        for segment in self.segments:
            if segment.to_id == stop_id:
                return segment
        raise InvalidOperationError(f"no path segment ends at stop {stop_id}")

    # ---- lifecycle ----

    async def initialize(
        self,
        origin: Stop | None,
        ordered_stops: list[Stop],
        destination: Stop | None,
    ) -> None:
        """Take the upstream-optimized order as is and resolve every adjacent pair."""
        if self._closed:
            raise InvalidOperationError("session is closed")
        if self._committed is not None:
            raise InvalidOperationError("route is already initialized")

        seq = RouteSequence.build(origin, ordered_stops, destination)
        pairs = seq.pairs()
        fresh = await self._resolve_batch(seq, pairs)

        self._segments = {p: fresh[p] for p in pairs}
        self._committed = self._pending = seq
        logger.info(
            "Route initialized: %d stops, %d segments resolved",
            len(seq.order), len(pairs),
        )

    def close(self) -> None:
        """Tear down: drop any in-flight batch and release every segment."""
        if self._closed:
            return
        self._supersede()
        segments, self._segments = self._segments, {}
        self._closed = True
        self._committed = self._pending = None
        self._dirty.clear()
        self._editing_id = None
        for segment in segments.values():
            self._release(segment)

    # ---- reordering ----

    def propose_reorder(self, stop_id: int, new_index: int) -> ReorderResult:
        """Move one stop to `new_index` among the movable stops, other stops keep their order."""
        current = self._require_loaded()
        if self._editing_id is not None:
            raise InvalidOperationError("finish or cancel the path edit before reordering")

        candidate = current.moved(stop_id, new_index)
        if candidate is current:
            return ReorderResult(accepted=True, dirty=frozenset())

        self._supersede()
        logger.debug("Stop %d moved to position %d", stop_id, new_index)
        if candidate == self._committed:
            # back to the committed order; nothing left to reconcile
            self._pending = self._committed
            self._dirty.clear()
            return ReorderResult(accepted=True, dirty=frozenset())

        self._pending = candidate
        self._dirty.add(stop_id)
        return ReorderResult(accepted=True, dirty=frozenset({stop_id}))

    async def move_point(self, direction: str, stop_id: int) -> ReorderResult:
        """Swap a stop with its predecessor ("up") or successor ("down")."""
        current = self._require_loaded()
        index = current.index_of(stop_id)
        if direction == "up":
            target = index - 1
        elif direction == "down":
            target = index + 1
        else:
            raise InvalidOperationError(f"unknown direction {direction!r}")

        if not 0 <= target < len(current.stops):
            raise InvalidOperationError(
                f"stop {stop_id} cannot move {direction}: origin and final destination stay fixed"
            )

        result = self.propose_reorder(stop_id, target)
        if self.auto_commit:
            await self.commit_reorder()
        return result

    async def commit_reorder(self) -> CommitResult:
        """Resolve segments for pairs that became adjacent and install the pending order.

        The new segment map is only installed once the whole batch returns.
        On failure the pending order rolls back to the committed one.
        """
        self._require_loaded()
        if self._editing_id is not None:
            raise InvalidOperationError("finish or cancel the path edit before committing")

        self._supersede()
        target = self._pending
        pairs = target.pairs()
        if target == self._committed:
            self._pending = self._committed
            self._dirty.clear()
            return CommitResult(resolved=(), reused=tuple(pairs), released=())

        missing = [p for p in pairs if p not in self._segments]
        task = asyncio.create_task(self._resolve_batch(target, missing))
        self._inflight = task
        logger.info("Committing reorder: %d new segment(s), %d reused", len(missing), len(pairs) - len(missing))

        try:
            fresh = await task
        except asyncio.CancelledError:
            if self._inflight is not task:
                raise CommitSupersededError("commit was superseded by a newer reorder") from None
            self._inflight = None
            raise
        except PathResolutionError as e:
            if self._inflight is not task:
                raise CommitSupersededError("commit was superseded by a newer reorder") from e
            self._inflight = None
            self._pending = self._committed
            self._dirty.clear()
            logger.warning("Commit failed, order rolled back: %s", e)
            raise

        if self._inflight is not task:
            raise CommitSupersededError("commit was superseded by a newer reorder")
        self._inflight = None

        new_segments = {p: self._segments.get(p) or fresh[p] for p in pairs}
        discarded = [s for key, s in self._segments.items() if key not in new_segments]
        self._segments = new_segments
        self._committed = target
        self._dirty.clear()
        for segment in discarded:
            self._release(segment)

        return CommitResult(
            resolved=tuple(missing),
            reused=tuple(p for p in pairs if p not in fresh),
            released=tuple(s.to_id for s in discarded),
        )

    # ---- manual path edits ----

    def begin_edit(self, stop_id: int) -> PathSegment:
        self._require_loaded()
        if self._editing_id is not None and self._editing_id != stop_id:
            raise InvalidOperationError(f"already editing the path to stop {self._editing_id}")
        if self.state in (EngineState.REORDERING, EngineState.RECONCILING):
            raise InvalidOperationError("commit the pending reorder before editing a path")

        segment = self.segment_for(stop_id)
        self._editing_id = stop_id
        return segment

    async def end_edit(self, stop_id: int, waypoints: Sequence[LatLng]) -> PathSegment:
        """Re-resolve the edited segment through `waypoints`; stays in editing on failure."""
        self._require_editing(stop_id)
        old = self.segment_for(stop_id)
        segment = await self._resolve_segment(old.from_id, old.to_id, tuple(waypoints))

        if self._editing_id != stop_id or self._segments.get(old.key) is not old:
            raise InvalidOperationError(f"edit of the path to stop {stop_id} was cancelled")
        self._replace(old, segment)
        self._editing_id = None
        return segment

    def cancel_edit(self, stop_id: int) -> PathSegment:
        """Leave editing; the segment keeps its last committed waypoints."""
        self._require_editing(stop_id)
        self._editing_id = None
        return self.segment_for(stop_id)

    async def clear_waypoints(self, stop_id: int) -> PathSegment:
        """Drop manual waypoints of the segment ending at `stop_id`."""
        self._require_loaded()
        if self._editing_id not in (None, stop_id):
            raise InvalidOperationError(f"already editing the path to stop {self._editing_id}")
        if self.state in (EngineState.REORDERING, EngineState.RECONCILING):
            raise InvalidOperationError("commit the pending reorder before editing a path")

        old = self.segment_for(stop_id)
        segment = await self._resolve_segment(old.from_id, old.to_id, ())
        if self._segments.get(old.key) is not old:
            raise InvalidOperationError(f"path to stop {stop_id} changed while clearing waypoints")
        self._replace(old, segment)
        if self._editing_id == stop_id:
            self._editing_id = None
        return segment

    # ---- finalize ----

    def finalize(self, tolerance: float | None = None) -> FinalizedRoute:
        """Concatenate segment geometry in order and encode it as a Google polyline."""
        current = self._require_loaded()
        pairs = current.pairs()
        if not pairs:
            raise IncompletePathError("route has no path segments")
        missing = [p for p in pairs if p not in self._segments]
        if missing:
            raise IncompletePathError(
                "path not resolved between stops "
                + ", ".join(f"{a}->{b}" for a, b in missing)
            )

        segments = [self._segments[p] for p in pairs]
        path = [point for segment in segments for point in segment.geometry]
        if not path:
            raise IncompletePathError("resolved segments carry no geometry")
        if tolerance:
            path = simplify(path, tolerance)

        min_lng, min_lat, max_lng, max_lat = MultiPoint([(p.lng, p.lat) for p in path]).bounds
        encoded = polyline.encode([(p.lat, p.lng) for p in path], POLYLINE_PRECISION)

        return FinalizedRoute(
            encoded_polyline=encoded,
            path=path,
            ordered_locations=[s.location for s in current.order],
            distance_m=sum(s.distance_m for s in segments),
            duration_s=sum(s.duration_s for s in segments),
            viewport=(LatLng(min_lat, min_lng), LatLng(max_lat, max_lng)),
        )

    # ---- internals ----

    def _require_loaded(self) -> RouteSequence:
        if self._closed:
            raise InvalidOperationError("session is closed")
        if self._pending is None:
            raise InvalidOperationError("route is still loading")
        return self._pending

    def _require_editing(self, stop_id: int) -> None:
        self._require_loaded()
        if self._editing_id != stop_id:
            raise InvalidOperationError(f"the path to stop {stop_id} is not being edited")

    def _supersede(self) -> None:
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("Superseded in-flight commit batch")

    def _release(self, segment: PathSegment) -> None:
        if self._on_release is not None:
            self._on_release(segment)

    def _replace(self, old: PathSegment, new: PathSegment) -> None:
        segments = dict(self._segments)
        segments[old.key] = new
        self._segments = segments
        self._release(old)

    async def _resolve_segment(
        self, from_id: int, to_id: int, waypoints: tuple[LatLng, ...]
    ) -> PathSegment:
        by_id = {s.id: s for s in self._require_loaded().order}
        try:
            resolved = await self._directions.resolve_path(
                by_id[from_id].location, by_id[to_id].location, waypoints
            )
        except PathResolutionError:
            raise
        except Exception as e:
            raise PathResolutionError(f"failed to resolve path {from_id}->{to_id}: {e}") from e
        return PathSegment.from_resolved(from_id, to_id, resolved, waypoints)

    async def _resolve_batch(
        self, seq: RouteSequence, pairs: list[SegmentKey]
    ) -> dict[SegmentKey, PathSegment]:
        """One request per pair, all in flight together; any failure fails the batch."""
        by_id = {s.id: s for s in seq.order}

        async def resolve(from_id: int, to_id: int) -> PathSegment:
            resolved = await self._directions.resolve_path(
                by_id[from_id].location, by_id[to_id].location, ()
            )
            return PathSegment.from_resolved(from_id, to_id, resolved)

        results = await asyncio.gather(
            *(resolve(a, b) for a, b in pairs), return_exceptions=True
        )
        for (a, b), result in zip(pairs, results):
            if isinstance(result, PathResolutionError):
                raise result
            if isinstance(result, BaseException):
                raise PathResolutionError(f"failed to resolve path {a}->{b}: {result}") from result
        return dict(zip(pairs, results))
