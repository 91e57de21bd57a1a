"""Directions provider contract and response parsing.

The core never talks to a routing backend itself. Hosts implement
DirectionsProvider on top of whatever HTTP client and vendor they use;
``parse_directions_response`` covers the common Mapbox-Directions JSON shape.
"""

import json
import logging
from typing import Any, Protocol, Sequence

from route_tracker.errors import DirectionsRequestFailed
from route_tracker.models import Coordinate, Maneuver, ManeuverKind, NavigationStep, Plan

logger = logging.getLogger(__name__)


class DirectionsProvider(Protocol):
    async def get_plan(self, waypoints: Sequence[Coordinate]) -> Plan:
        """Return walking directions through ``waypoints``.

        Raises:
            DirectionsRequestFailed: (or any exception) if no plan is available.
        """
        ...


def _parse_step(step: dict[str, Any]) -> NavigationStep:
    maneuver = step["maneuver"]
    lng, lat = maneuver["location"]
    return NavigationStep(
        instruction=maneuver.get("instruction", ""),
        distance_m=float(step.get("distance", 0.0)),
        duration_s=float(step.get("duration", 0.0)),
        maneuver=Maneuver(
            kind=ManeuverKind.parse(maneuver.get("type")),
            modifier=maneuver.get("modifier"),
            location=Coordinate(lat=lat, lng=lng),
        ),
    )


def parse_directions_response(data: dict[str, Any]) -> Plan:
    """Convert a Mapbox-Directions-style response body into a Plan.

    Uses the first route. Steps from all legs are concatenated in order and
    GeoJSON ``[lng, lat]`` geometry is converted to Coordinates.

    Raises:
        DirectionsRequestFailed: If the response has no routes or is malformed.
    """
    routes = data.get("routes") or []
    if not routes:
        message = data.get("message") or data.get("code") or "no routes returned"
        raise DirectionsRequestFailed(f"Directions request returned no route: {message}")

    route = routes[0]
    try:
        steps = tuple(
            _parse_step(step)
            for leg in route.get("legs", [])
            for step in leg.get("steps", [])
        )
        coordinates = tuple(
            Coordinate(lat=lat, lng=lng)
            for lng, lat in route["geometry"]["coordinates"]
        )
        return Plan(
            distance_m=float(route["distance"]),
            duration_s=float(route["duration"]),
            steps=steps,
            coordinates=coordinates,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DirectionsRequestFailed(f"Malformed directions response: {e}") from e


class SavedDirectionsProvider:
    """Answers every request with a directions response saved to a JSON file.

    Lets a recorded walk be navigated offline, e.g. from the CLI. The
    waypoints of each request are kept in ``requests``.
    """

    def __init__(self, filepath: str):
        self.filepath = filepath
        self.requests: list[list[Coordinate]] = []

    async def get_plan(self, waypoints: Sequence[Coordinate]) -> Plan:
        self.requests.append(list(waypoints))
        try:
            with open(self.filepath) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DirectionsRequestFailed(f"Could not read directions from {self.filepath}: {e}") from e
        plan = parse_directions_response(data)
        logger.debug("Loaded plan with %d steps from %s", len(plan.steps), self.filepath)
        return plan
