"""Configuration loading and tunable thresholds."""

from dataclasses import dataclass
import json
import os
from pathlib import Path

CONFIG_DIR = Path.home() / ".config" / "route-tracker"
CONFIG_PATH = CONFIG_DIR / "route-tracker.json"
LOCAL_CONFIG_PATH = Path("route-tracker.json")

DEFAULT_BATCH_SIZE = 10  # fixes per persistence batch
DEFAULT_STEP_ADVANCE_THRESHOLD_M = 20.0
DEFAULT_OFF_ROUTE_THRESHOLD_M = 50.0
DEFAULT_REPLAN_LOOKAHEAD_STEPS = 5
DEFAULT_STATIC_MAP_MAX_POINTS = 40


def load_config() -> dict:
    """Load configuration from config files.

    Merges config from global and local files:
    1. ~/.config/route-tracker/route-tracker.json (global, loaded first)
    2. ./route-tracker.json (local, overrides global)

    Returns:
        Dict with merged config values, empty dict if no files exist.
    """
    config = {}
    for config_path in [CONFIG_PATH, LOCAL_CONFIG_PATH]:
        if config_path.exists():
            try:
                with config_path.open() as f:
                    config.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                continue
    return config


def get_mapbox_token(config: dict | None = None) -> str | None:
    """Get the Mapbox access token from config, then MAPBOX_TOKEN."""
    if config is None:
        config = load_config()
    return config.get("mapbox_token") or os.environ.get("MAPBOX_TOKEN")


def get_mapbox_style(config: dict | None = None) -> str:
    """Get the Mapbox style id from config, then MAPBOX_STYLE, then streets."""
    if config is None:
        config = load_config()
    return (
        config.get("mapbox_style")
        or os.environ.get("MAPBOX_STYLE")
        or "mapbox/streets-v12"
    )


@dataclass(frozen=True)
class TrackingConfig:
    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")

    @classmethod
    def from_config(cls, config: dict) -> "TrackingConfig":
        return cls(batch_size=int(config.get("batch_size", DEFAULT_BATCH_SIZE)))


@dataclass(frozen=True)
class NavigationConfig:
    step_advance_threshold_m: float = DEFAULT_STEP_ADVANCE_THRESHOLD_M
    off_route_threshold_m: float = DEFAULT_OFF_ROUTE_THRESHOLD_M
    replan_lookahead_steps: int = DEFAULT_REPLAN_LOOKAHEAD_STEPS

    @classmethod
    def from_config(cls, config: dict) -> "NavigationConfig":
        return cls(
            step_advance_threshold_m=float(
                config.get("step_advance_threshold_m", DEFAULT_STEP_ADVANCE_THRESHOLD_M)
            ),
            off_route_threshold_m=float(
                config.get("off_route_threshold_m", DEFAULT_OFF_ROUTE_THRESHOLD_M)
            ),
            replan_lookahead_steps=int(
                config.get("replan_lookahead_steps", DEFAULT_REPLAN_LOOKAHEAD_STEPS)
            ),
        )
