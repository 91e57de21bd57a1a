"""Error types raised by route_tracker.

Input-data errors also subclass ValueError so callers that already handle
ValueError keep working.
"""


class RouteTrackerError(Exception):
    """Base class for all route_tracker errors."""


class EmptyInput(RouteTrackerError, ValueError):
    """An operation that needs at least one coordinate got none."""


class OutOfRangeCoordinate(RouteTrackerError, ValueError):
    """A latitude or longitude is outside the WGS84 range."""


class MalformedEncoding(RouteTrackerError, ValueError):
    """A polyline string could not be decoded."""


class PositionUnavailable(RouteTrackerError):
    """The position source failed or location permission was denied."""


class DirectionsRequestFailed(RouteTrackerError):
    """The directions provider errored or returned no usable route."""


class InvalidState(RouteTrackerError, RuntimeError):
    """An operation was called in a state that does not allow it."""
