"""Formatting utilities for display."""


def format_duration(seconds: float) -> str:
    """Format seconds as H:MM:SS, or M:SS under an hour."""
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_distance(meters: float) -> str:
    """Format meters as 'X.XX km' from 1 km upwards, otherwise 'X m'."""
    if meters >= 1000:
        return f"{meters / 1000:.2f} km"
    return f"{round(meters)} m"


def format_pace(seconds_per_km: float) -> str:
    """Format a pace as M:SS /km, or '--:--' when there is none yet."""
    if seconds_per_km <= 0 or seconds_per_km == float("inf"):
        return "--:--"
    total = int(round(seconds_per_km))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d} /km"
