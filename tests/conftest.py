import os

import pytest

from route_tracker.models import Coordinate, Maneuver, ManeuverKind, NavigationStep, Plan, TimedCoordinate

SAMPLE_GPX_PATH = os.path.join(
    os.path.dirname(__file__), "functional", "data", "sample_walk.gpx"
)

# ~111 m per 0.001 degrees along the equator
STEP_SPACING_DEG = 0.001


class FakeDirectionsProvider:
    """Returns canned plans and records every waypoint list it was asked for."""

    def __init__(self, plans=None, error=None, before_return=None):
        self.plans = list(plans or [])
        self.error = error
        self.before_return = before_return
        self.calls = []

    async def get_plan(self, waypoints):
        self.calls.append(list(waypoints))
        if self.before_return is not None:
            self.before_return()
        if self.error is not None:
            raise self.error
        if len(self.plans) > 1:
            return self.plans.pop(0)
        return self.plans[0]


def make_plan(origin_lng=0.0, n_steps=3, lat=0.0):
    """A plan along the equator with one maneuver every ~111 m."""
    steps = []
    for i in range(n_steps):
        is_last = i == n_steps - 1
        steps.append(
            NavigationStep(
                instruction="Arrive" if is_last else f"Step {i}",
                distance_m=0.0 if is_last else 111.0,
                duration_s=0.0 if is_last else 80.0,
                maneuver=Maneuver(
                    kind=ManeuverKind.ARRIVE if is_last else (ManeuverKind.DEPART if i == 0 else ManeuverKind.TURN),
                    modifier=None if i == 0 or is_last else "left",
                    location=Coordinate(lat, origin_lng + i * STEP_SPACING_DEG),
                ),
            )
        )
    span = (n_steps - 1) * STEP_SPACING_DEG
    n_points = int(round(span / 0.0001)) + 1
    coordinates = tuple(Coordinate(lat, origin_lng + j * 0.0001) for j in range(n_points))
    return Plan(
        distance_m=sum(s.distance_m for s in steps),
        duration_s=sum(s.duration_s for s in steps),
        steps=tuple(steps),
        coordinates=coordinates,
    )


@pytest.fixture
def three_step_plan():
    return make_plan()


@pytest.fixture
def recorded_path():
    """A straight recorded path of 21 points, ~11 m apart, along the equator."""
    return [Coordinate(0.0, j * 0.0001) for j in range(21)]


@pytest.fixture
def simple_fixes():
    """Three fixes ~111 m apart, 10 s apart."""
    return [
        TimedCoordinate(lat=0.0, lng=0.0, timestamp=0.0),
        TimedCoordinate(lat=0.0, lng=0.001, timestamp=10.0),
        TimedCoordinate(lat=0.0, lng=0.002, timestamp=20.0),
    ]
