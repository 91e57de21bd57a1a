"""Turn-by-turn navigation along a previously recorded path.

A NavigationEngine moves through
IDLE -> PLANNING -> NAVIGATING <-> REPLANNING -> STOPPED.
Fix handling is synchronous; only the initial position fix and the
directions requests are awaited.
"""

import asyncio
import logging
from threading import RLock
from typing import Callable, Sequence

from route_tracker.config import NavigationConfig
from route_tracker.directions import DirectionsProvider
from route_tracker.distance import distance_to_path, haversine_distance
from route_tracker.errors import (
    DirectionsRequestFailed,
    EmptyInput,
    InvalidState,
    PositionUnavailable,
)
from route_tracker.models import (
    Coordinate,
    NavigationState,
    NavigationStatus,
    NavigationStep,
    Plan,
    TimedCoordinate,
)
from route_tracker.position import PositionSource, Subscription

logger = logging.getLogger(__name__)

StateCallback = Callable[[NavigationState], None]
ErrorCallback = Callable[[Exception], None]

_LIVE_STATUSES = (NavigationStatus.NAVIGATING, NavigationStatus.REPLANNING)


class NavigationEngine:
    """Guides a user along a recorded path using a directions plan.

    On every live fix the engine advances at most one step (when the current
    step's maneuver is within ``step_advance_threshold_m``), flags the user as
    off route when no route point is within ``off_route_threshold_m`` and
    recomputes the remaining distance and duration. Replanning is never
    automatic; the host calls ``recalculate_route`` when it sees fit.

    All failures, including those of the async operations, are reported
    through ``on_error``.
    """

    def __init__(
        self,
        position_source: PositionSource,
        directions_provider: DirectionsProvider,
        on_state_change: StateCallback,
        on_error: ErrorCallback,
        config: NavigationConfig | None = None,
    ):
        self.position_source = position_source
        self.directions_provider = directions_provider
        self.on_state_change = on_state_change
        self.on_error = on_error
        self.config = config or NavigationConfig()

        self._lock = RLock()
        self._status = NavigationStatus.IDLE
        self._subscription: Subscription | None = None
        # Bumped on every plan request and on stop; stale results are discarded
        self._generation = 0

        self._steps: tuple[NavigationStep, ...] = ()
        self._current_step_index = 0
        self._remaining_distance = 0.0
        self._remaining_duration = 0.0
        self._current_location: Coordinate | None = None
        self._last_fix_time: float | None = None
        self._is_off_route = False
        self._route_coordinates: tuple[Coordinate, ...] = ()

    @property
    def status(self) -> NavigationStatus:
        return self._status

    @property
    def state(self) -> NavigationState:
        with self._lock:
            return self._snapshot()

    async def start_navigation(self, recorded_path: Sequence[Coordinate]) -> bool:
        """Plan a route from the current position through the recorded path.

        The itinerary is [current position, first path point, last path point].

        Returns:
            True once navigating, False if the start failed or was cancelled.
        """
        with self._lock:
            if self._status is not NavigationStatus.IDLE:
                self._report(InvalidState(f"Cannot start navigation while {self._status.value}"))
                return False
            if not recorded_path:
                self._report(EmptyInput("Recorded path is empty"))
                return False
            self._status = NavigationStatus.PLANNING
            self._generation += 1
            generation = self._generation

        start = Coordinate(recorded_path[0].lat, recorded_path[0].lng)
        end = Coordinate(recorded_path[-1].lat, recorded_path[-1].lng)

        try:
            fix = await self._current_position()
            plan = await self._request_plan([fix.coordinate, start, end])
        except (PositionUnavailable, DirectionsRequestFailed) as e:
            with self._lock:
                if generation != self._generation:
                    return False
                self._status = NavigationStatus.IDLE
                self._report(e)
            return False
        except asyncio.CancelledError:
            with self._lock:
                if generation == self._generation:
                    self._status = NavigationStatus.IDLE
                    logger.info("Navigation start cancelled")
            raise

        with self._lock:
            if generation != self._generation or self._status is not NavigationStatus.PLANNING:
                logger.info("Discarding plan that resolved after navigation was stopped")
                return False
            self._apply_plan(plan)
            self._current_location = fix.coordinate
            self._last_fix_time = fix.timestamp
            self._is_off_route = False
            self._status = NavigationStatus.NAVIGATING
            logger.info(
                "Navigation started: %d steps, %.0f m",
                len(self._steps), self._remaining_distance,
            )
            self._subscription = self.position_source.subscribe(self._handle_fix, self._handle_error)
            self._notify()
        return True

    async def recalculate_route(self) -> bool:
        """Request a fresh plan from the current location.

        The new itinerary goes through the maneuver a few steps ahead
        (``replan_lookahead_steps``, or the last step if fewer remain) to the
        end of the current route. On failure the current plan is kept.

        Returns:
            True if the plan was replaced.
        """
        with self._lock:
            if self._status is not NavigationStatus.NAVIGATING:
                self._report(InvalidState(f"Cannot recalculate route while {self._status.value}"))
                return False
            if self._current_location is None or not self._steps:
                self._report(InvalidState("Cannot recalculate route without a current location"))
                return False

            target_index = min(
                self._current_step_index + self.config.replan_lookahead_steps,
                len(self._steps) - 1,
            )
            waypoints = [
                self._current_location,
                self._steps[target_index].maneuver.location,
                self._route_coordinates[-1],
            ]
            self._status = NavigationStatus.REPLANNING
            self._generation += 1
            generation = self._generation
            logger.info("Recalculating route via step %d", target_index)

        try:
            plan = await self._request_plan(waypoints)
        except DirectionsRequestFailed as e:
            with self._lock:
                if generation != self._generation or self._status is not NavigationStatus.REPLANNING:
                    return False
                self._status = NavigationStatus.NAVIGATING
                self._report(e)
            return False
        except asyncio.CancelledError:
            with self._lock:
                if generation == self._generation and self._status is NavigationStatus.REPLANNING:
                    self._status = NavigationStatus.NAVIGATING
                    logger.info("Route recalculation cancelled")
            raise

        with self._lock:
            if generation != self._generation or self._status is not NavigationStatus.REPLANNING:
                logger.info("Discarding replan that resolved after navigation was stopped")
                return False
            self._apply_plan(plan)
            self._is_off_route = False
            self._status = NavigationStatus.NAVIGATING
            self._notify()
        return True

    def stop(self) -> NavigationState:
        """Stop navigating. Terminal; no callback fires afterwards."""
        with self._lock:
            if self._status is NavigationStatus.STOPPED:
                return self._snapshot()
            if self._subscription is not None:
                self.position_source.unsubscribe(self._subscription)
                self._subscription = None
            self._generation += 1
            self._status = NavigationStatus.STOPPED
            logger.info("Navigation stopped at step %d", self._current_step_index)
            self._notify()
            return self._snapshot()

    async def _current_position(self) -> TimedCoordinate:
        try:
            return await self.position_source.get_current_position()
        except PositionUnavailable:
            raise
        except Exception as e:
            raise PositionUnavailable(f"Could not get current position: {e}") from e

    async def _request_plan(self, waypoints: list[Coordinate]) -> Plan:
        try:
            plan = await self.directions_provider.get_plan(waypoints)
        except DirectionsRequestFailed:
            raise
        except Exception as e:
            raise DirectionsRequestFailed(f"Failed to get directions: {e}") from e
        if not plan.steps or not plan.coordinates:
            raise DirectionsRequestFailed("Directions provider returned an empty route")
        return plan

    def _apply_plan(self, plan: Plan) -> None:
        self._steps = tuple(plan.steps)
        self._current_step_index = 0
        self._route_coordinates = tuple(plan.coordinates)
        self._update_remaining()

    def _handle_fix(self, fix: TimedCoordinate) -> None:
        with self._lock:
            if self._status not in _LIVE_STATUSES:
                return
            if self._last_fix_time is not None and fix.timestamp <= self._last_fix_time:
                logger.warning("Dropping out-of-order fix at t=%s", fix.timestamp)
                return

            self._last_fix_time = fix.timestamp
            location = fix.coordinate
            self._current_location = location

            step = self._current_step()
            if step is not None:
                distance_to_maneuver = haversine_distance(location, step.maneuver.location)
                # One step per fix at most, even if several maneuvers are in range
                if (
                    distance_to_maneuver < self.config.step_advance_threshold_m
                    and self._current_step_index < len(self._steps) - 1
                ):
                    self._current_step_index += 1
                    logger.info(
                        "Advanced to step %d: %s",
                        self._current_step_index, self._steps[self._current_step_index].instruction,
                    )

            off_route = distance_to_path(location, self._route_coordinates) > self.config.off_route_threshold_m
            if off_route and not self._is_off_route:
                logger.warning("Off route at %.5f,%.5f", location.lat, location.lng)
            self._is_off_route = off_route

            self._update_remaining()
            self._notify()

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if self._status not in _LIVE_STATUSES:
                return
            if not isinstance(error, PositionUnavailable):
                wrapped = PositionUnavailable(f"Location error: {error}")
                wrapped.__cause__ = error
                error = wrapped
            self._report(error)

    def _current_step(self) -> NavigationStep | None:
        if self._current_step_index < len(self._steps):
            return self._steps[self._current_step_index]
        return None

    def _update_remaining(self) -> None:
        undone = self._steps[self._current_step_index:]
        self._remaining_distance = sum(s.distance_m for s in undone)
        self._remaining_duration = sum(s.duration_s for s in undone)

    def _report(self, error: Exception) -> None:
        logger.warning("Navigation error: %s", error)
        self.on_error(error)

    def _notify(self) -> None:
        self.on_state_change(self._snapshot())

    def _snapshot(self) -> NavigationState:
        return NavigationState(
            status=self._status,
            is_navigating=self._status in _LIVE_STATUSES,
            steps=self._steps,
            current_step_index=self._current_step_index,
            remaining_distance_m=self._remaining_distance,
            remaining_duration_s=self._remaining_duration,
            current_location=self._current_location,
            is_off_route=self._is_off_route,
            route_coordinates=self._route_coordinates,
        )
