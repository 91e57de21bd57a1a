from dataclasses import dataclass, field
from enum import Enum

from route_tracker.errors import OutOfRangeCoordinate


def _check_range(lat: float, lng: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise OutOfRangeCoordinate(f"Latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise OutOfRangeCoordinate(f"Longitude out of range: {lng}")


@dataclass(frozen=True)
class Coordinate:
    lat: float  # degrees, WGS84
    lng: float  # degrees, WGS84

    def __post_init__(self):
        _check_range(self.lat, self.lng)


@dataclass(frozen=True)
class TimedCoordinate:
    lat: float
    lng: float
    timestamp: float  # seconds
    elevation: float | None = None  # meters
    accuracy: float | None = None  # meters, as reported by the position source

    def __post_init__(self):
        _check_range(self.lat, self.lng)

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


@dataclass(frozen=True)
class BBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lng_span(self) -> float:
        return self.max_lng - self.min_lng


class SessionStatus(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class NavigationStatus(Enum):
    IDLE = "idle"
    PLANNING = "planning"
    NAVIGATING = "navigating"
    REPLANNING = "replanning"
    STOPPED = "stopped"


class ManeuverKind(Enum):
    """Maneuver types reported by walking directions providers."""
    DEPART = "depart"
    TURN = "turn"
    CONTINUE = "continue"
    NEW_NAME = "new name"
    MERGE = "merge"
    FORK = "fork"
    END_OF_ROAD = "end of road"
    ON_RAMP = "on ramp"
    OFF_RAMP = "off ramp"
    ROUNDABOUT = "roundabout"
    ROTARY = "rotary"
    ROUNDABOUT_TURN = "roundabout turn"
    EXIT_ROUNDABOUT = "exit roundabout"
    EXIT_ROTARY = "exit rotary"
    NOTIFICATION = "notification"
    ARRIVE = "arrive"
    OTHER = "other"  # anything the provider adds later

    @classmethod
    def parse(cls, value: str | None) -> "ManeuverKind":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER
    STOPPED = "stopped"


@dataclass(frozen=True)
class TrackingStats:
    distance_m: float = 0.0
    duration_s: float = 0.0  # active time, pauses excluded
    pace_s_per_km: float = 0.0
    elevation_gain_m: float = 0.0


@dataclass(frozen=True)
class TrackingState:
    """Immutable snapshot of a tracking session."""
    status: SessionStatus
    coordinates: tuple[TimedCoordinate, ...] = ()
    stats: TrackingStats = field(default_factory=TrackingStats)
    is_paused: bool = False

    @property
    def is_tracking(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)


@dataclass(frozen=True)
class Maneuver:
    kind: ManeuverKind
    location: Coordinate
    modifier: str | None = None  # e.g. "left", "slight right"


@dataclass(frozen=True)
class NavigationStep:
    instruction: str
    distance_m: float
    duration_s: float
    maneuver: Maneuver


@dataclass(frozen=True)
class Plan:
    distance_m: float
    duration_s: float
    steps: tuple[NavigationStep, ...]
    coordinates: tuple[Coordinate, ...]


@dataclass(frozen=True)
class NavigationState:
    """Immutable snapshot of a navigation engine."""
    status: NavigationStatus
    is_navigating: bool = False
    steps: tuple[NavigationStep, ...] = ()
    current_step_index: int = 0
    remaining_distance_m: float = 0.0
    remaining_duration_s: float = 0.0
    current_location: Coordinate | None = None
    is_off_route: bool = False
    route_coordinates: tuple[Coordinate, ...] = ()

    @property
    def current_step(self) -> NavigationStep | None:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None
