import asyncio

import pytest

from conftest import FakeDirectionsProvider, make_plan
from route_tracker.config import NavigationConfig
from route_tracker.errors import (
    DirectionsRequestFailed,
    EmptyInput,
    InvalidState,
    PositionUnavailable,
)
from route_tracker.models import (
    Coordinate,
    ManeuverKind,
    NavigationStatus,
    NavigationStep,
    Plan,
    TimedCoordinate,
)
from route_tracker.navigation import NavigationEngine
from route_tracker.position import ReplayPositionSource

START_FIX = TimedCoordinate(lat=0.0, lng=-0.0005, timestamp=0.0)


def _fix(lng, t, lat=0.0):
    return TimedCoordinate(lat=lat, lng=lng, timestamp=t)


class BlockingDirectionsProvider:
    """Never answers; used to cancel requests in flight."""

    def __init__(self):
        self.calls = []

    async def get_plan(self, waypoints):
        self.calls.append(list(waypoints))
        await asyncio.Event().wait()


async def _cancel_when_requested(engine, provider, operation):
    task = asyncio.create_task(operation)
    while not provider.calls:
        await asyncio.sleep(0)
    status = engine.status
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    return status


class Harness:
    def __init__(self, provider, source=None, config=None):
        self.source = source or ReplayPositionSource(current_position=START_FIX)
        self.provider = provider
        self.states = []
        self.errors = []
        self.engine = NavigationEngine(
            self.source,
            provider,
            self.states.append,
            self.errors.append,
            config,
        )

    def start(self, path):
        return asyncio.run(self.engine.start_navigation(path))

    def recalculate(self):
        return asyncio.run(self.engine.recalculate_route())


@pytest.fixture
def navigating(three_step_plan, recorded_path):
    harness = Harness(FakeDirectionsProvider([three_step_plan]))
    assert harness.start(recorded_path)
    return harness


class TestStartNavigation:
    def test_requests_three_point_itinerary(self, three_step_plan, recorded_path):
        harness = Harness(FakeDirectionsProvider([three_step_plan]))
        assert harness.start(recorded_path)

        assert harness.provider.calls == [[START_FIX.coordinate, recorded_path[0], recorded_path[-1]]]

    def test_initial_state(self, navigating, three_step_plan):
        state = navigating.engine.state
        assert state.status is NavigationStatus.NAVIGATING
        assert state.is_navigating
        assert state.steps == three_step_plan.steps
        assert state.current_step_index == 0
        assert state.current_step == three_step_plan.steps[0]
        assert state.remaining_distance_m == pytest.approx(222)
        assert state.remaining_duration_s == pytest.approx(160)
        assert state.current_location == START_FIX.coordinate
        assert not state.is_off_route
        assert state.route_coordinates == three_step_plan.coordinates

    def test_emits_and_subscribes(self, navigating):
        assert len(navigating.states) == 1
        assert navigating.states[0].is_navigating
        assert navigating.source.subscriber_count == 1

    def test_accepts_timed_coordinates_as_path(self, three_step_plan):
        path = [_fix(0, 0), _fix(0.002, 100)]
        harness = Harness(FakeDirectionsProvider([three_step_plan]))
        assert harness.start(path)
        assert harness.provider.calls[0][1] == Coordinate(0, 0)

    def test_empty_path(self, three_step_plan):
        harness = Harness(FakeDirectionsProvider([three_step_plan]))
        assert not harness.start([])
        assert isinstance(harness.errors[0], EmptyInput)
        assert harness.provider.calls == []
        assert harness.engine.status is NavigationStatus.IDLE

    def test_directions_failure_is_retryable(self, three_step_plan, recorded_path):
        provider = FakeDirectionsProvider([three_step_plan], error=ConnectionError("timeout"))
        harness = Harness(provider)

        assert not harness.start(recorded_path)
        assert isinstance(harness.errors[0], DirectionsRequestFailed)
        assert isinstance(harness.errors[0].__cause__, ConnectionError)
        assert harness.engine.status is NavigationStatus.IDLE
        assert harness.source.subscriber_count == 0
        assert harness.states == []

        provider.error = None
        assert harness.start(recorded_path)
        assert harness.engine.status is NavigationStatus.NAVIGATING

    def test_empty_plan_is_a_failure(self, recorded_path):
        empty = Plan(distance_m=0, duration_s=0, steps=(), coordinates=())
        harness = Harness(FakeDirectionsProvider([empty]))
        assert not harness.start(recorded_path)
        assert isinstance(harness.errors[0], DirectionsRequestFailed)

    def test_position_unavailable(self, three_step_plan, recorded_path):
        harness = Harness(FakeDirectionsProvider([three_step_plan]), source=ReplayPositionSource())
        assert not harness.start(recorded_path)
        assert isinstance(harness.errors[0], PositionUnavailable)
        assert harness.provider.calls == []

    def test_start_twice(self, navigating, recorded_path):
        assert not navigating.start(recorded_path)
        assert isinstance(navigating.errors[0], InvalidState)
        assert navigating.engine.status is NavigationStatus.NAVIGATING

    def test_plan_resolving_after_stop_is_discarded(self, three_step_plan, recorded_path):
        harness = Harness(FakeDirectionsProvider([three_step_plan]))
        harness.provider.before_return = harness.engine.stop

        assert not harness.start(recorded_path)
        assert harness.engine.status is NavigationStatus.STOPPED
        assert not any(s.is_navigating for s in harness.states)
        assert harness.source.subscriber_count == 0
        assert harness.errors == []


class TestStepAdvance:
    def test_advances_once_when_maneuver_in_range(self, navigating):
        navigating.source.push(_fix(-0.0003, 1))  # ~33 m from step 0
        assert navigating.engine.state.current_step_index == 0

        navigating.source.push(_fix(-0.0001, 2))  # ~11 m from step 0
        assert navigating.engine.state.current_step_index == 1

        navigating.source.push(_fix(0.0, 3))  # on step 0, but step 1 is ~111 m away
        assert navigating.engine.state.current_step_index == 1

    def test_never_skips_multiple_steps_per_fix(self, recorded_path):
        plan = make_plan(n_steps=3)
        crowded = Plan(
            distance_m=plan.distance_m,
            duration_s=plan.duration_s,
            # Steps 0 and 1 share a maneuver location
            steps=(plan.steps[0], NavigationStep(
                instruction="Turn left",
                distance_m=111.0,
                duration_s=80.0,
                maneuver=plan.steps[0].maneuver,
            ), plan.steps[2]),
            coordinates=plan.coordinates,
        )
        harness = Harness(FakeDirectionsProvider([crowded]))
        harness.start(recorded_path)

        harness.source.push(_fix(0.0, 1))
        assert harness.engine.state.current_step_index == 1
        harness.source.push(_fix(0.00001, 2))
        assert harness.engine.state.current_step_index == 2

    def test_does_not_advance_past_last_step(self, navigating):
        for t, lng in enumerate([0.0, 0.001, 0.002, 0.002], start=1):
            navigating.source.push(_fix(lng + t * 1e-6, t))
        state = navigating.engine.state
        assert state.current_step_index == 2
        assert state.current_step.maneuver.kind is ManeuverKind.ARRIVE

    def test_remaining_stats_follow_index(self, navigating):
        navigating.source.push(_fix(0.0, 1))
        state = navigating.engine.state
        assert state.remaining_distance_m == pytest.approx(111)
        assert state.remaining_duration_s == pytest.approx(80)

    def test_custom_threshold(self, three_step_plan, recorded_path):
        harness = Harness(
            FakeDirectionsProvider([three_step_plan]),
            config=NavigationConfig(step_advance_threshold_m=5),
        )
        harness.start(recorded_path)
        harness.source.push(_fix(-0.0001, 1))  # ~11 m away
        assert harness.engine.state.current_step_index == 0

    def test_updates_current_location(self, navigating):
        navigating.source.push(_fix(0.0005, 1))
        assert navigating.engine.state.current_location == Coordinate(0.0, 0.0005)

    def test_out_of_order_fix_dropped(self, navigating):
        navigating.source.push(_fix(0.0005, 5))
        navigating.source.push(_fix(0.0, 4))
        assert navigating.engine.state.current_location == Coordinate(0.0, 0.0005)
        assert len(navigating.states) == 2


class TestOffRoute:
    def test_far_fix_is_off_route(self, navigating):
        navigating.source.push(_fix(0.001, 1, lat=0.009))  # ~1000 m north
        assert navigating.engine.state.is_off_route

    def test_near_fix_is_on_route(self, navigating):
        navigating.source.push(_fix(0.001, 1, lat=0.00009))  # ~10 m north
        assert not navigating.engine.state.is_off_route

    def test_returning_clears_flag(self, navigating):
        navigating.source.push(_fix(0.001, 1, lat=0.009))
        navigating.source.push(_fix(0.001, 2))
        assert not navigating.engine.state.is_off_route

    def test_off_route_does_not_replan(self, navigating):
        navigating.source.push(_fix(0.001, 1, lat=0.009))
        assert len(navigating.provider.calls) == 1


class TestRecalculateRoute:
    def test_replaces_plan(self, three_step_plan, recorded_path):
        replan = make_plan(origin_lng=0.005, n_steps=4)
        harness = Harness(FakeDirectionsProvider([three_step_plan, replan]))
        harness.start(recorded_path)
        harness.source.push(_fix(-0.0001, 1))
        harness.source.push(_fix(0.001, 2, lat=0.009))
        assert harness.engine.state.is_off_route

        assert harness.recalculate()

        state = harness.engine.state
        assert state.steps == replan.steps
        assert state.current_step_index == 0
        assert state.route_coordinates == replan.coordinates
        assert not state.is_off_route
        assert state.status is NavigationStatus.NAVIGATING
        assert state.remaining_distance_m == pytest.approx(333)

    def test_itinerary_targets_last_step_when_few_remain(self, navigating, three_step_plan):
        navigating.source.push(_fix(0.001, 1, lat=0.009))
        navigating.recalculate()

        current, target, destination = navigating.provider.calls[-1]
        assert current == Coordinate(0.009, 0.001)
        assert target == three_step_plan.steps[-1].maneuver.location
        assert destination == three_step_plan.coordinates[-1]

    def test_itinerary_looks_ahead(self, recorded_path):
        long_plan = make_plan(n_steps=10)
        harness = Harness(
            FakeDirectionsProvider([long_plan]),
            config=NavigationConfig(replan_lookahead_steps=3),
        )
        harness.start(recorded_path)
        harness.source.push(_fix(0.0, 1))
        harness.recalculate()

        _, target, _ = harness.provider.calls[-1]
        assert target == long_plan.steps[4].maneuver.location

    def test_failure_keeps_stale_plan(self, navigating, three_step_plan):
        navigating.source.push(_fix(0.0, 1))
        before = navigating.engine.state
        navigating.provider.error = RuntimeError("503")

        assert not navigating.recalculate()

        after = navigating.engine.state
        assert isinstance(navigating.errors[0], DirectionsRequestFailed)
        assert after == before
        assert after.status is NavigationStatus.NAVIGATING
        # Still following the live stream
        navigating.source.push(_fix(0.001, 2))
        assert navigating.engine.state.current_step_index == 2

    def test_requires_navigation(self, three_step_plan):
        harness = Harness(FakeDirectionsProvider([three_step_plan]))
        assert not harness.recalculate()
        assert isinstance(harness.errors[0], InvalidState)
        assert harness.provider.calls == []

    def test_result_after_stop_discarded(self, navigating):
        navigating.provider.before_return = navigating.engine.stop
        emitted = len(navigating.states)

        assert not navigating.recalculate()
        assert navigating.engine.status is NavigationStatus.STOPPED
        # Only the stop snapshot was emitted
        assert len(navigating.states) == emitted + 1
        assert not navigating.states[-1].is_navigating


class TestStop:
    def test_stop(self, navigating):
        final = navigating.engine.stop()
        assert final.status is NavigationStatus.STOPPED
        assert not final.is_navigating
        assert navigating.source.subscriber_count == 0
        assert not navigating.states[-1].is_navigating

    def test_no_callbacks_after_stop(self, navigating):
        navigating.engine.stop()
        emitted = len(navigating.states)
        navigating.source.push(_fix(0.0, 1))
        navigating.source.fail(RuntimeError("gps lost"))
        navigating.engine.stop()

        assert len(navigating.states) == emitted
        assert navigating.errors == []

    def test_position_error_while_navigating(self, navigating):
        navigating.source.fail(RuntimeError("signal lost"))
        assert isinstance(navigating.errors[0], PositionUnavailable)
        assert navigating.engine.status is NavigationStatus.NAVIGATING


class TestIndependentInstances:
    def test_two_engines_do_not_share_state(self, three_step_plan, recorded_path):
        first = Harness(FakeDirectionsProvider([three_step_plan]))
        second = Harness(FakeDirectionsProvider([three_step_plan]))
        first.start(recorded_path)
        second.start(recorded_path)

        first.source.push(_fix(0.0, 1))
        assert first.engine.state.current_step_index == 1
        assert second.engine.state.current_step_index == 0


class TestCancellation:
    def test_cancelled_start_is_retryable(self, three_step_plan, recorded_path):
        provider = BlockingDirectionsProvider()
        harness = Harness(provider)
        engine = harness.engine

        status = asyncio.run(
            _cancel_when_requested(engine, provider, engine.start_navigation(recorded_path))
        )

        assert status is NavigationStatus.PLANNING
        assert engine.status is NavigationStatus.IDLE
        assert harness.errors == []
        assert harness.states == []
        assert harness.source.subscriber_count == 0

        engine.directions_provider = FakeDirectionsProvider([three_step_plan])
        assert harness.start(recorded_path)
        assert engine.status is NavigationStatus.NAVIGATING

    def test_cancelled_recalculation_keeps_plan(self, navigating, three_step_plan):
        provider = BlockingDirectionsProvider()
        engine = navigating.engine
        engine.directions_provider = provider
        emitted = len(navigating.states)

        status = asyncio.run(
            _cancel_when_requested(engine, provider, engine.recalculate_route())
        )

        assert status is NavigationStatus.REPLANNING
        assert engine.status is NavigationStatus.NAVIGATING
        assert engine.state.steps == three_step_plan.steps
        assert len(navigating.states) == emitted

        engine.directions_provider = FakeDirectionsProvider([three_step_plan])
        assert navigating.recalculate()

    def test_cancel_after_stop_stays_stopped(self, recorded_path):
        provider = BlockingDirectionsProvider()
        harness = Harness(provider)
        engine = harness.engine

        async def stop_then_cancel():
            task = asyncio.create_task(engine.start_navigation(recorded_path))
            while not provider.calls:
                await asyncio.sleep(0)
            engine.stop()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(stop_then_cancel())
        assert engine.status is NavigationStatus.STOPPED
