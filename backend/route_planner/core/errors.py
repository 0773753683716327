"""Errors raised by the route planning core."""


class RoutePlanningError(Exception):
    """Base class for every planner error."""


class ConfigurationError(RoutePlanningError):
    """Malformed or missing session data. Fatal to session start."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PrecedenceViolation(RoutePlanningError):
    """A reorder would put a delivery before one of its pickups."""

    def __init__(self, message: str, stop_id: int, conflicting_id: int) -> None:
        super().__init__(message)
        self.stop_id = stop_id
        self.conflicting_id = conflicting_id


class PathResolutionError(RoutePlanningError):
    """The directions provider failed to resolve a path segment."""


class IncompletePathError(RoutePlanningError):
    """Finalize was attempted while some adjacent pair has no segment."""


class InvalidOperationError(RoutePlanningError):
    """Unknown stop, out-of-range position or operation not allowed in the current state."""


class CommitSupersededError(RoutePlanningError):
    """A newer reorder or commit replaced this commit before its batch returned."""


class SessionNotFoundError(RoutePlanningError):
    """No planning session is open for the given company/order."""
