from datetime import datetime, timezone
from typing import Sequence

import gpxpy
import gpxpy.gpx

from route_tracker.models import TimedCoordinate


def parse_gpx(filepath: str) -> list[TimedCoordinate]:
    """Parse a GPX file and return its track points as timed coordinates.

    Points without a timestamp are placed one second after the previous point
    (the first one at 0) so the sequence stays strictly increasing.
    """
    with open(filepath, "r") as f:
        gpx = gpxpy.parse(f)

    points: list[TimedCoordinate] = []
    for track in gpx.tracks:
        for segment in track.segments:
            for pt in segment.points:
                if pt.time is not None:
                    timestamp = pt.time.timestamp()
                elif points:
                    timestamp = points[-1].timestamp + 1.0
                else:
                    timestamp = 0.0
                points.append(
                    TimedCoordinate(
                        lat=pt.latitude,
                        lng=pt.longitude,
                        timestamp=timestamp,
                        elevation=pt.elevation,
                    )
                )
    return points


def to_gpx(coordinates: Sequence[TimedCoordinate], name: str | None = None) -> str:
    """Serialize a recorded track to a GPX 1.1 document."""
    gpx = gpxpy.gpx.GPX()
    track = gpxpy.gpx.GPXTrack(name=name)
    gpx.tracks.append(track)
    segment = gpxpy.gpx.GPXTrackSegment()
    track.segments.append(segment)

    for pt in coordinates:
        segment.points.append(
            gpxpy.gpx.GPXTrackPoint(
                latitude=pt.lat,
                longitude=pt.lng,
                elevation=pt.elevation,
                time=datetime.fromtimestamp(pt.timestamp, tz=timezone.utc),
            )
        )
    return gpx.to_xml()
