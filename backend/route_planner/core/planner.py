"""Session orchestrator: one route ordering engine per (company, order)."""

import logging

from route_planner.config import settings
from route_planner.core.broadcaster import Broadcaster
from route_planner.core.delivery_client import DeliveryApiClient
from route_planner.core.engine import DirectionsProvider, RouteOrderingEngine
from route_planner.core.errors import SessionNotFoundError
from route_planner.core.models import FinalizedRoute, PathSegment, SessionConfig

logger = logging.getLogger(__name__)


def session_key(config: SessionConfig) -> str:
    return f"{config.company_key}:{config.order_id}"


class RoutePlanner:
    """Opens, looks up, finalizes and tears down planning sessions."""

    def __init__(
        self,
        delivery: DeliveryApiClient,
        directions: DirectionsProvider,
        broadcaster: Broadcaster | None = None,
        commit_mode: str | None = None,
    ) -> None:
        self.delivery = delivery
        self.directions = directions
        self.broadcaster = broadcaster
        self.auto_commit = (commit_mode or settings.commit_mode) == "immediate"
        self._sessions: dict[SessionConfig, RouteOrderingEngine] = {}

    def _new_engine(self, config: SessionConfig) -> RouteOrderingEngine:
        key = session_key(config)

        def on_release(segment: PathSegment) -> None:
            if self.broadcaster:
                self.broadcaster.publish(key, {
                    "type": "segment_released",
                    "from_id": segment.from_id,
                    "stop_id": segment.to_id,
                })

        return RouteOrderingEngine(self.directions, on_release=on_release, auto_commit=self.auto_commit)

    async def open_session(self, config: SessionConfig) -> RouteOrderingEngine:
        """Load the order's stops and resolve the initial route.

        An existing session for the same order is replaced only once the new
        one is fully initialized.
        """
        route = await self.delivery.get_route_stops(config)
        engine = self._new_engine(config)
        await engine.initialize(route.origin, route.ordered_stops, route.destination)

        old = self._sessions.pop(config, None)
        if old is not None:
            old.close()
        self._sessions[config] = engine
        logger.info("Opened session %s with %d stops", session_key(config), len(engine.order))
        self.notify(config)
        return engine

    def get_session(self, config: SessionConfig) -> RouteOrderingEngine:
        engine = self._sessions.get(config)
        if engine is None:
            raise SessionNotFoundError(f"no planning session for order {config.order_id}")
        return engine

    async def reset_session(self, config: SessionConfig) -> RouteOrderingEngine:
        """Discard every change and reload the upstream-optimized order."""
        self.get_session(config)
        return await self.open_session(config)

    async def finalize_and_save(self, config: SessionConfig) -> tuple[FinalizedRoute, bool]:
        engine = self.get_session(config)
        route = engine.finalize(tolerance=settings.persist_simplify_tolerance or None)
        saved = await self.delivery.save_route(config, route.encoded_polyline, route.ordered_locations)
        if not saved:
            logger.warning("Route for %s finalized but not saved", session_key(config))
        return route, saved

    def close_session(self, config: SessionConfig) -> None:
        engine = self._sessions.pop(config, None)
        if engine is None:
            raise SessionNotFoundError(f"no planning session for order {config.order_id}")
        engine.close()
        logger.info("Closed session %s", session_key(config))

    def close(self) -> None:
        for config in list(self._sessions):
            self.close_session(config)

    def notify(self, config: SessionConfig) -> None:
        """Publish the session's current state and stop order."""
        if not self.broadcaster:
            return
        engine = self._sessions.get(config)
        if engine is None:
            return
        self.broadcaster.publish(session_key(config), {
            "type": "session_updated",
            "state": engine.state.value,
            "order": [s.id for s in engine.order],
        })
