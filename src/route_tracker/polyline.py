"""Polyline encoding, route simplification and zoom estimation.

Encoding follows the standard polyline algorithm at precision 5: each
coordinate is rounded to 1e-5 degrees (about 1.1 m), successive deltas are
zig-zag encoded and packed 5 bits per character with a +63 ASCII offset.
Precision beyond 5 decimal places is lost on purpose.
"""

import json
import math
from functools import reduce
from typing import Sequence

from route_tracker.distance import bounding_box
from route_tracker.errors import EmptyInput, MalformedEncoding
from route_tracker.models import Coordinate, TimedCoordinate

PRECISION = 1e5
DEFAULT_ZOOM = 15
MIN_ZOOM = 1
MAX_ZOOM = 20
# Douglas-Peucker tolerance in degrees, about 1.1 m
DEFAULT_TOLERANCE = 0.00001

_CHUNK_BITS = 5
_CHUNK_MASK = 0x1F
_CONTINUATION = 0x20
_ASCII_OFFSET = 63
_MAX_CHAR = _ASCII_OFFSET + _CONTINUATION + _CHUNK_MASK  # '~'


def simplify(points: Sequence[Coordinate], max_points: int) -> list[Coordinate]:
    """Down-sample a path to at most ``max_points`` points.

    The first and last points are always kept. Interior points are taken
    every ``ceil(len(points) / max_points)`` indices, so every returned point
    is one of the input points (nothing is interpolated).

    Raises:
        ValueError: If ``max_points`` is less than 2.
    """
    if max_points < 2:
        raise ValueError(f"max_points must be at least 2, got {max_points}")
    if len(points) <= max_points:
        return list(points)

    stride = math.ceil(len(points) / max_points)
    last = len(points) - 1
    # Leave room for the last point
    indices = list(range(0, last, stride))[: max_points - 1]
    return [points[i] for i in indices] + [points[last]]


def _perpendicular_distance(point: Coordinate, start: Coordinate, end: Coordinate) -> float:
    """Planar distance in degrees from ``point`` to the segment start-end."""
    dlat = end.lat - start.lat
    dlng = end.lng - start.lng
    length_sq = dlat * dlat + dlng * dlng
    t = 0.0
    if length_sq > 0:
        t = ((point.lat - start.lat) * dlat + (point.lng - start.lng) * dlng) / length_sq
        t = max(0.0, min(1.0, t))
    nearest_lat = start.lat + t * dlat
    nearest_lng = start.lng + t * dlng
    return math.hypot(point.lat - nearest_lat, point.lng - nearest_lng)


def simplify_tolerance(points: Sequence[Coordinate], tolerance: float = DEFAULT_TOLERANCE) -> list[Coordinate]:
    """Douglas-Peucker simplification.

    Drops every point that lies within ``tolerance`` degrees of the line
    between the points kept around it. Endpoints are always kept and the
    returned points are the original objects, in order.

    Raises:
        ValueError: If ``tolerance`` is negative.
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must not be negative, got {tolerance}")
    if len(points) <= 2:
        return list(points)

    keep = [False] * len(points)
    keep[0] = keep[-1] = True
    segments = [(0, len(points) - 1)]
    while segments:
        first, last = segments.pop()
        max_distance = 0.0
        split = first
        for i in range(first + 1, last):
            distance = _perpendicular_distance(points[i], points[first], points[last])
            if distance > max_distance:
                max_distance = distance
                split = i
        if max_distance > tolerance:
            keep[split] = True
            segments.append((first, split))
            segments.append((split, last))

    return [p for p, kept in zip(points, keep) if kept]


def _encode_value(value: int) -> str:
    """Zig-zag encode a signed integer and pack it into polyline characters."""
    value = ~(value << 1) if value < 0 else value << 1
    chars = []
    while value >= _CONTINUATION:
        chars.append(chr((_CONTINUATION | (value & _CHUNK_MASK)) + _ASCII_OFFSET))
        value >>= _CHUNK_BITS
    chars.append(chr(value + _ASCII_OFFSET))
    return "".join(chars)


def _encode_step(acc: tuple[int, int, list[str]], point: Coordinate) -> tuple[int, int, list[str]]:
    prev_lat, prev_lng, chunks = acc
    lat = int(round(point.lat * PRECISION))
    lng = int(round(point.lng * PRECISION))
    chunks.append(_encode_value(lat - prev_lat))
    chunks.append(_encode_value(lng - prev_lng))
    return lat, lng, chunks


def encode(points: Sequence[Coordinate]) -> str:
    """Encode a coordinate sequence as a polyline string.

    Output is URL-safe once percent-quoted ('\\' and '`' are in the alphabet)
    and grows linearly with the number of points.
    """
    _, _, chunks = reduce(_encode_step, points, (0, 0, []))
    return "".join(chunks)


def _decode_value(encoded: str, index: int) -> tuple[int, int]:
    """Decode one signed value starting at ``index``.

    Returns (value, next_index).

    Raises:
        MalformedEncoding: On an invalid character or an unterminated value.
    """
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise MalformedEncoding(f"Unterminated value at offset {index}")
        code = ord(encoded[index])
        if code < _ASCII_OFFSET or code > _MAX_CHAR:
            raise MalformedEncoding(f"Invalid character {encoded[index]!r} at offset {index}")
        chunk = code - _ASCII_OFFSET
        index += 1
        result |= (chunk & _CHUNK_MASK) << shift
        shift += _CHUNK_BITS
        if chunk < _CONTINUATION:
            break

    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode(encoded: str) -> list[Coordinate]:
    """Decode a polyline string back into coordinates.

    Raises:
        MalformedEncoding: If the string is truncated or has invalid characters.
        OutOfRangeCoordinate: If a decoded point is not a valid lat/lng.
    """
    coordinates = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        dlat, index = _decode_value(encoded, index)
        if index >= len(encoded):
            raise MalformedEncoding("Latitude without matching longitude at end of input")
        dlng, index = _decode_value(encoded, index)
        lat += dlat
        lng += dlng
        # Coordinate() validates the range and raises OutOfRangeCoordinate
        coordinates.append(Coordinate(lat / PRECISION, lng / PRECISION))

    return coordinates


def optimal_zoom(points: Sequence[Coordinate], viewport_w: int = 400, viewport_h: int = 300) -> int:
    """Estimate a map zoom level (1-20) that fits ``points``.

    Uses ``log2(360 / span)`` for both the latitude and longitude span, keeps
    the smaller of the two and subtracts 1 for padding. A single point (or a
    box with no span at all) gets DEFAULT_ZOOM.

    The span formula is calibrated for thumbnail-sized viewports; the
    viewport dimensions are validated but do not shift the result.

    Raises:
        EmptyInput: If ``points`` is empty.
        ValueError: If a viewport dimension is not positive.
    """
    if viewport_w <= 0 or viewport_h <= 0:
        raise ValueError(f"Viewport must be positive, got {viewport_w}x{viewport_h}")
    if not points:
        raise EmptyInput("Cannot compute zoom for empty coordinates")
    if len(points) == 1:
        return DEFAULT_ZOOM

    box = bounding_box(points)
    candidates = [math.log2(360 / span) for span in (box.lat_span, box.lng_span) if span > 0]
    if not candidates:
        return DEFAULT_ZOOM

    zoom = math.floor(min(candidates)) - 1
    return max(MIN_ZOOM, min(MAX_ZOOM, zoom))


def compress_route(
    points: Sequence[TimedCoordinate], tolerance: float = DEFAULT_TOLERANCE
) -> tuple[str, list[float], list[float | None]]:
    """Pack a recorded track for storage.

    The track is simplified with simplify_tolerance and encoded; timestamps
    and elevations of the kept points travel alongside in parallel lists.

    Returns:
        (encoded polyline, timestamps, elevations)
    """
    kept = simplify_tolerance(points, tolerance)
    return (
        encode(kept),
        [p.timestamp for p in kept],
        [p.elevation for p in kept],
    )


def decompress_route(
    encoded: str, timestamps: Sequence[float], elevations: Sequence[float | None]
) -> list[TimedCoordinate]:
    """Rebuild a track stored with compress_route.

    Raises:
        MalformedEncoding: If the polyline is invalid or the lists do not
            line up with the decoded points.
    """
    coordinates = decode(encoded)
    if not len(coordinates) == len(timestamps) == len(elevations):
        raise MalformedEncoding(
            f"Stored route has {len(coordinates)} points but {len(timestamps)} "
            f"timestamps and {len(elevations)} elevations"
        )
    return [
        TimedCoordinate(lat=c.lat, lng=c.lng, timestamp=t, elevation=e)
        for c, t, e in zip(coordinates, timestamps, elevations)
    ]


def compression_ratio(points: Sequence[Coordinate], encoded: str) -> float:
    """Percentage of space saved by ``encoded`` compared to plain JSON."""
    original = json.dumps([{"lat": p.lat, "lng": p.lng} for p in points])
    if not points:
        return 0.0
    return (len(original) - len(encoded)) / len(original) * 100
