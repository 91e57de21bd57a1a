"""Position stream abstraction and an in-memory replay source."""

import itertools
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Protocol

from route_tracker.errors import PositionUnavailable
from route_tracker.models import TimedCoordinate

logger = logging.getLogger(__name__)

FixCallback = Callable[[TimedCoordinate], None]
ErrorCallback = Callable[[Exception], None]

_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    """Handle returned by PositionSource.subscribe."""
    on_fix: FixCallback
    on_error: ErrorCallback
    id: int = 0
    active: bool = True

    def __post_init__(self):
        if not self.id:
            self.id = next(_subscription_ids)


class PositionSource(Protocol):
    """Push-based source of GPS fixes supplied by the host application.

    Implementations may call the subscription callbacks from any thread, but
    must deliver fixes in time order for each subscription.
    """

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> Subscription:
        ...

    def unsubscribe(self, subscription: Subscription) -> None:
        ...

    async def get_current_position(self) -> TimedCoordinate:
        """One-shot fix. Raises PositionUnavailable on failure."""
        ...


class ReplayPositionSource:
    """Plays back a fixed list of fixes to subscribers.

    Used for tests, for the CLI and for replaying previously recorded GPX
    tracks. Fixes are delivered synchronously on the calling thread.
    """

    def __init__(self, fixes: Iterable[TimedCoordinate] = (), current_position: TimedCoordinate | None = None):
        self.fixes: list[TimedCoordinate] = list(fixes)
        self.current_position = current_position
        self.index = 0
        self._now: float | None = None
        self._subscriptions: list[Subscription] = []
        self._lock = Lock()

    @classmethod
    def from_gpx(cls, filepath: str) -> "ReplayPositionSource":
        from route_tracker.parser import parse_gpx

        fixes = parse_gpx(filepath)
        logger.info("Loaded %d fixes from %s", len(fixes), filepath)
        return cls(fixes)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback) -> Subscription:
        subscription = Subscription(on_fix=on_fix, on_error=on_error)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def clock(self) -> float:
        """Replay time: the newest timestamp pushed so far.

        Before the first push this is the first fix's timestamp, so a session
        started ahead of a replay measures durations on the recorded times.
        """
        if self._now is not None:
            return self._now
        if self.fixes:
            return self.fixes[0].timestamp
        return 0.0

    async def get_current_position(self) -> TimedCoordinate:
        if self.current_position is not None:
            return self.current_position
        if self.fixes:
            return self.fixes[min(self.index, len(self.fixes) - 1)]
        raise PositionUnavailable("No position available from replay source")

    def push(self, fix: TimedCoordinate) -> None:
        """Deliver one fix to every active subscriber."""
        self.current_position = fix
        if self._now is None or fix.timestamp > self._now:
            self._now = fix.timestamp
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            if subscription.active:
                subscription.on_fix(fix)

    def fail(self, error: Exception) -> None:
        """Deliver an error to every active subscriber."""
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            if subscription.active:
                subscription.on_error(error)

    def replay(self, count: int | None = None) -> int:
        """Push the next ``count`` fixes (all remaining by default).

        Returns:
            Number of fixes pushed.
        """
        end = len(self.fixes) if count is None else min(len(self.fixes), self.index + count)
        pushed = 0
        while self.index < end:
            fix = self.fixes[self.index]
            self.index += 1
            self.push(fix)
            pushed += 1
        return pushed
