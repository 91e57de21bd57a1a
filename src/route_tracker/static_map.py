"""Static map image URLs for route previews.

Builds Mapbox Static Images API URLs with the route drawn as an encoded
polyline overlay. Only the URL is produced; fetching the image is up to the
caller.
"""

from typing import Sequence
from urllib.parse import quote

from route_tracker.config import (
    DEFAULT_STATIC_MAP_MAX_POINTS,
    get_mapbox_style,
    get_mapbox_token,
    load_config,
)
from route_tracker.distance import bbox_center
from route_tracker.errors import EmptyInput
from route_tracker.models import Coordinate
from route_tracker.polyline import encode, optimal_zoom, simplify

STATIC_API_BASE = "https://api.mapbox.com/styles/v1"

ROUTE_STROKE = "path-3+2e2ad6-0.8"
START_PIN = "pin-s-a+22c55e"
END_PIN = "pin-s-b+ef4444"
LOCATION_PIN = "pin-s+2e2ad6"


def _build_url(
    overlays: list[str],
    center: Coordinate,
    zoom: int,
    bearing: float,
    pitch: float,
    width: int,
    height: int,
    retina: bool,
    token: str | None,
    style: str | None,
) -> str:
    if token is None or style is None:
        config = load_config()
        if token is None:
            token = get_mapbox_token(config)
        if style is None:
            style = get_mapbox_style(config)

    retina_str = "@2x" if retina else ""
    url = (
        f"{STATIC_API_BASE}/{style}/static/{','.join(overlays)}/"
        f"{center.lng},{center.lat},{zoom},{bearing},{pitch}/{width}x{height}{retina_str}"
    )
    if token:
        url += f"?access_token={token}"
    return url


def generate_route_static_image(
    coordinates: Sequence[Coordinate],
    width: int = 400,
    height: int = 300,
    zoom: int | None = None,
    bearing: float = 0,
    pitch: float = 0,
    retina: bool = True,
    max_points: int = DEFAULT_STATIC_MAP_MAX_POINTS,
    token: str | None = None,
    style: str | None = None,
) -> str:
    """Build a static map URL showing a route with start and end markers.

    The route is simplified to ``max_points`` before encoding to keep the URL
    under the API length limit. Markers use the original first and last
    coordinates. When ``zoom`` is None it is estimated with optimal_zoom.

    Raises:
        EmptyInput: If ``coordinates`` is empty.
    """
    if not coordinates:
        raise EmptyInput("Coordinates array cannot be empty")

    simplified = simplify(coordinates, max_points)
    path = quote(encode(simplified), safe="")
    first = coordinates[0]
    last = coordinates[-1]
    overlays = [
        f"{START_PIN}({first.lng},{first.lat})",
        f"{END_PIN}({last.lng},{last.lat})",
        f"{ROUTE_STROKE}({path})",
    ]

    if zoom is None:
        zoom = optimal_zoom(coordinates, width, height)

    return _build_url(
        overlays, bbox_center(coordinates), zoom, bearing, pitch,
        width, height, retina, token, style,
    )


def generate_location_static_image(
    location: Coordinate,
    width: int = 400,
    height: int = 300,
    zoom: int = 14,
    bearing: float = 0,
    pitch: float = 0,
    retina: bool = True,
    token: str | None = None,
    style: str | None = None,
) -> str:
    """Build a static map URL with a single marker centered on ``location``."""
    overlays = [f"{LOCATION_PIN}({location.lng},{location.lat})"]
    return _build_url(
        overlays, location, zoom, bearing, pitch,
        width, height, retina, token, style,
    )
