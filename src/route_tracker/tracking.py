"""Live activity tracking from a position stream.

A TrackingSession moves through IDLE -> ACTIVE <-> PAUSED -> STOPPED.
STOPPED is terminal; construct a new session to track again.
"""

import logging
import time
from threading import RLock
from typing import Callable

from route_tracker.config import TrackingConfig
from route_tracker.distance import elevation_gain, haversine_distance, pace
from route_tracker.errors import InvalidState, PositionUnavailable
from route_tracker.models import SessionStatus, TimedCoordinate, TrackingState, TrackingStats
from route_tracker.position import PositionSource, Subscription

logger = logging.getLogger(__name__)

StateCallback = Callable[[TrackingState], None]
ErrorCallback = Callable[[Exception], None]
PersistenceSink = Callable[[list[TimedCoordinate]], None]
Clock = Callable[[], float]


class TrackingSession:
    """Turns a stream of GPS fixes into cumulative distance, duration and pace.

    Duration is elapsed time on ``clock`` since start() minus the total time
    spent paused. Fixes received while paused are still recorded so the path
    stays continuous, but add no distance or elevation gain.

    ``clock`` defaults to time.monotonic. Replays pass the source's own clock
    (see ReplayPositionSource.clock) so durations follow the recorded fixes.

    Every ``batch_size`` accepted fixes the newest batch is handed to
    ``on_batch`` so a host can persist the path incrementally.
    """

    def __init__(
        self,
        position_source: PositionSource,
        config: TrackingConfig | None = None,
        on_batch: PersistenceSink | None = None,
        clock: Clock | None = None,
    ):
        self.position_source = position_source
        self.config = config or TrackingConfig()
        self.on_batch = on_batch
        self.clock = clock or time.monotonic

        self._lock = RLock()
        self._status = SessionStatus.IDLE
        self._emit: StateCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._subscription: Subscription | None = None

        self._coordinates: list[TimedCoordinate] = []
        self._pending_batch: list[TimedCoordinate] = []
        self._distance = 0.0
        self._elevation_gain = 0.0
        self._last_elevated: TimedCoordinate | None = None

        self._started_at: float | None = None
        self._paused_at: float | None = None
        self._paused_total = 0.0
        self._stopped_at: float | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> TrackingState:
        """Current immutable snapshot."""
        with self._lock:
            return self._snapshot()

    def start(self, emit: StateCallback, on_error: ErrorCallback | None = None) -> None:
        """Begin consuming the position stream.

        Raises:
            InvalidState: If the session was already started.
        """
        with self._lock:
            if self._status is not SessionStatus.IDLE:
                raise InvalidState(f"Cannot start a session that is {self._status.value}")
            self._emit = emit
            self._on_error = on_error
            self._status = SessionStatus.ACTIVE
            self._started_at = self.clock()
            logger.info("Tracking session started")
        self._subscription = self.position_source.subscribe(self._handle_fix, self._handle_error)

    def pause(self) -> None:
        """Stop accumulating distance and time; fixes are still recorded."""
        with self._lock:
            self._require_running("pause")
            if self._status is SessionStatus.PAUSED:
                return
            self._status = SessionStatus.PAUSED
            self._paused_at = self.clock()
            logger.info("Tracking paused after %.0f m", self._distance)
            self._notify()

    def resume(self) -> None:
        with self._lock:
            self._require_running("resume")
            if self._status is SessionStatus.ACTIVE:
                return
            self._paused_total += self.clock() - self._paused_at
            self._paused_at = None
            self._status = SessionStatus.ACTIVE
            logger.info("Tracking resumed")
            self._notify()

    def tick(self) -> None:
        """Emit a fresh snapshot so hosts can refresh the elapsed time between fixes."""
        with self._lock:
            if self._status is SessionStatus.ACTIVE:
                self._notify()

    def stop(self) -> TrackingState:
        """Stop consuming fixes and return the final state.

        Any partially filled persistence batch is flushed before returning.
        Calling stop() again returns the same final state.

        Raises:
            InvalidState: If the session was never started.
        """
        with self._lock:
            if self._status is SessionStatus.IDLE:
                raise InvalidState("Cannot stop a session that was never started")
            if self._status is SessionStatus.STOPPED:
                return self._snapshot()

            if self._subscription is not None:
                self.position_source.unsubscribe(self._subscription)
                self._subscription = None

            self._stopped_at = self.clock()
            self._status = SessionStatus.STOPPED
            if self._pending_batch:
                self._flush_batch()
            logger.info(
                "Tracking stopped: %d points, %.0f m in %.0f s",
                len(self._coordinates), self._distance, self._duration(),
            )
            return self._snapshot()

    def _require_running(self, operation: str) -> None:
        if self._status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
            raise InvalidState(f"Cannot {operation} a session that is {self._status.value}")

    def _handle_fix(self, fix: TimedCoordinate) -> None:
        with self._lock:
            if self._status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
                return

            if self._coordinates:
                prev = self._coordinates[-1]
                if fix.timestamp <= prev.timestamp:
                    logger.warning(
                        "Dropping out-of-order fix at t=%s (last accepted t=%s)",
                        fix.timestamp, prev.timestamp,
                    )
                    return
                if self._status is SessionStatus.ACTIVE:
                    self._distance += haversine_distance(prev, fix)
                    if self._last_elevated is not None:
                        self._elevation_gain += elevation_gain((self._last_elevated, fix))

            if fix.elevation is not None:
                self._last_elevated = fix
            self._coordinates.append(fix)
            logger.debug("Fix %d accepted, distance %.1f m", len(self._coordinates), self._distance)

            self._pending_batch.append(fix)
            if len(self._pending_batch) >= self.config.batch_size:
                self._flush_batch()

            self._notify()

    def _handle_error(self, error: Exception) -> None:
        with self._lock:
            if self._status not in (SessionStatus.ACTIVE, SessionStatus.PAUSED):
                return
            if not isinstance(error, PositionUnavailable):
                wrapped = PositionUnavailable(f"Location error: {error}")
                wrapped.__cause__ = error
                error = wrapped
            logger.warning("Position source error: %s", error)
            if self._on_error is not None:
                self._on_error(error)

    def _flush_batch(self) -> None:
        batch = self._pending_batch
        self._pending_batch = []
        if self.on_batch is not None:
            self.on_batch(batch)

    def _notify(self) -> None:
        if self._emit is not None:
            self._emit(self._snapshot())

    def _duration(self) -> float:
        if self._started_at is None:
            return 0.0
        now = self._stopped_at if self._stopped_at is not None else self.clock()
        paused = self._paused_total
        if self._paused_at is not None:
            paused += now - self._paused_at
        return max(0.0, now - self._started_at - paused)

    def _snapshot(self) -> TrackingState:
        duration = self._duration()
        return TrackingState(
            status=self._status,
            coordinates=tuple(self._coordinates),
            stats=TrackingStats(
                distance_m=self._distance,
                duration_s=duration,
                pace_s_per_km=pace(self._distance, duration),
                elevation_gain_m=self._elevation_gain,
            ),
            is_paused=self._status is SessionStatus.PAUSED,
        )
