import argparse
import asyncio
import json
import logging
import sys

from route_tracker import __version_date__, get_git_hash
from route_tracker.config import (
    DEFAULT_STATIC_MAP_MAX_POINTS,
    NavigationConfig,
    TrackingConfig,
    load_config,
)
from route_tracker.directions import SavedDirectionsProvider
from route_tracker.distance import path_distance, speed
from route_tracker.errors import RouteTrackerError
from route_tracker.formatters import format_distance, format_duration, format_pace
from route_tracker.models import NavigationState, TimedCoordinate
from route_tracker.navigation import NavigationEngine
from route_tracker.parser import to_gpx
from route_tracker.polyline import (
    DEFAULT_TOLERANCE,
    compress_route,
    compression_ratio,
    decode,
    decompress_route,
    encode,
    simplify,
    simplify_tolerance,
)
from route_tracker.position import ReplayPositionSource
from route_tracker.static_map import generate_location_static_image, generate_route_static_image
from route_tracker.tracking import TrackingSession

# Default values for CLI options
DEFAULTS = {
    "batch_size": TrackingConfig().batch_size,
    "max_points": DEFAULT_STATIC_MAP_MAX_POINTS,
    "width": 400,
    "height": 300,
}


def build_parser(config: dict | None = None) -> argparse.ArgumentParser:
    """Build argument parser with defaults from config file."""
    if config is None:
        config = {}

    def get_default(key: str, config_key: str | None = None) -> int:
        return int(config.get(config_key or key, DEFAULTS[key]))

    parser = argparse.ArgumentParser(
        prog="route-tracker",
        description="Replay, compress, preview and navigate GPS routes.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"route-tracker {__version_date__} ({get_git_hash()})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    summary = subparsers.add_parser("summary", help="Replay a GPX track and print tracking statistics")
    summary.add_argument("gpx_file", help="Path to GPX file")
    summary.add_argument(
        "--batch-size",
        type=int,
        default=TrackingConfig.from_config(config).batch_size,
        help=f"Fixes per persistence batch (default: {DEFAULTS['batch_size']})",
    )
    summary.add_argument(
        "--gpx-out",
        default=None,
        help="Write the recorded track to this GPX file",
    )

    encode_cmd = subparsers.add_parser("encode", help="Print the polyline of a GPX track")
    encode_cmd.add_argument("gpx_file", help="Path to GPX file")
    encode_cmd.add_argument(
        "--max-points",
        type=int,
        default=get_default("max_points", "static_map_max_points"),
        help=f"Simplify to at most this many points (default: {DEFAULTS['max_points']})",
    )
    encode_cmd.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Simplify with Douglas-Peucker at this tolerance in degrees instead of --max-points",
    )
    encode_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print a storage payload with timestamps and elevations",
    )

    decode_cmd = subparsers.add_parser("decode", help="Decode a polyline into lat,lng lines")
    decode_cmd.add_argument("polyline", help="Encoded polyline string")

    decompress = subparsers.add_parser("decompress", help="Print the points of a payload written by 'encode --json'")
    decompress.add_argument("payload_file", help="Path to JSON payload")

    static_map = subparsers.add_parser("static-map", help="Print a static map image URL for a GPX track")
    static_map.add_argument("gpx_file", help="Path to GPX file")
    static_map.add_argument("--width", type=int, default=DEFAULTS["width"], help="Image width in pixels")
    static_map.add_argument("--height", type=int, default=DEFAULTS["height"], help="Image height in pixels")
    static_map.add_argument(
        "--max-points",
        type=int,
        default=get_default("max_points", "static_map_max_points"),
        help=f"Simplify to at most this many points (default: {DEFAULTS['max_points']})",
    )
    static_map.add_argument(
        "--location",
        action="store_true",
        help="Show only the last recorded position instead of the whole route",
    )

    navigate = subparsers.add_parser(
        "navigate", help="Replay a GPX track through turn-by-turn navigation"
    )
    navigate.add_argument("gpx_file", help="Path to GPX file")
    navigate.add_argument("directions_file", help="Saved directions response (JSON)")
    return parser


def _load_replay(gpx_path: str) -> ReplayPositionSource:
    try:
        source = ReplayPositionSource.from_gpx(gpx_path)
    except FileNotFoundError:
        print(f"Error: File not found: {gpx_path}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error parsing GPX file: {e}", file=sys.stderr)
        sys.exit(1)

    if not source.fixes:
        print("Error: GPX file contains no track points.", file=sys.stderr)
        sys.exit(1)
    return source


def _load_track(gpx_path: str) -> list[TimedCoordinate]:
    return _load_replay(gpx_path).fixes


def run_summary(args: argparse.Namespace) -> None:
    source = _load_replay(args.gpx_file)
    points = list(source.fixes)
    batches: list[int] = []
    session = TrackingSession(
        source,
        TrackingConfig(batch_size=args.batch_size),
        on_batch=lambda batch: batches.append(len(batch)),
        clock=source.clock,
    )
    session.start(lambda state: None)
    source.replay()
    state = session.stop()

    stats = state.stats
    dropped = len(points) - len(state.coordinates)
    print("=== Track Summary ===")
    print(f"Points:         {len(state.coordinates)} ({dropped} dropped)")
    print(f"Distance:       {format_distance(stats.distance_m)}")
    print(f"Duration:       {format_duration(stats.duration_s)}")
    print(f"Pace:           {format_pace(stats.pace_s_per_km)}")
    print(f"Avg Speed:      {speed(stats.distance_m, stats.duration_s) * 3.6:.1f} km/h")
    print(f"Elevation Gain: {stats.elevation_gain_m:.0f} m")
    print(f"Batches:        {len(batches)}")

    if args.gpx_out:
        with open(args.gpx_out, "w") as f:
            f.write(to_gpx(state.coordinates))
        print(f"Track written to {args.gpx_out}")


def run_encode(args: argparse.Namespace) -> None:
    track = _load_track(args.gpx_file)

    if args.json:
        tolerance = DEFAULT_TOLERANCE if args.tolerance is None else args.tolerance
        encoded, timestamps, elevations = compress_route(track, tolerance)
        print(json.dumps({"polyline": encoded, "timestamps": timestamps, "elevations": elevations}))
        print(f"{len(track)} points -> {len(timestamps)} points", file=sys.stderr)
        return

    points = [pt.coordinate for pt in track]
    if args.tolerance is not None:
        simplified = simplify_tolerance(points, args.tolerance)
    else:
        simplified = simplify(points, args.max_points)
    encoded = encode(simplified)
    print(encoded)
    print(
        f"{len(points)} points -> {len(simplified)} points "
        f"({format_distance(path_distance(simplified))} of {format_distance(path_distance(points))}), "
        f"{compression_ratio(simplified, encoded):.0f}% smaller than JSON",
        file=sys.stderr,
    )


def run_decode(args: argparse.Namespace) -> None:
    for coord in decode(args.polyline):
        print(f"{coord.lat:.5f},{coord.lng:.5f}")


def run_decompress(args: argparse.Namespace) -> None:
    try:
        with open(args.payload_file) as f:
            payload = json.load(f)
        stored = (payload["polyline"], payload["timestamps"], payload["elevations"])
    except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error reading payload: {e}", file=sys.stderr)
        sys.exit(1)

    for pt in decompress_route(*stored):
        elevation = "" if pt.elevation is None else f"{pt.elevation:.1f}"
        print(f"{pt.lat:.5f},{pt.lng:.5f},{pt.timestamp:.0f},{elevation}")


def run_static_map(args: argparse.Namespace) -> None:
    points = [pt.coordinate for pt in _load_track(args.gpx_file)]
    if args.location:
        print(generate_location_static_image(points[-1], width=args.width, height=args.height))
        return
    print(
        generate_route_static_image(
            points,
            width=args.width,
            height=args.height,
            max_points=args.max_points,
        )
    )


def run_navigate(args: argparse.Namespace) -> None:
    source = _load_replay(args.gpx_file)
    points = list(source.fixes)
    errors: list[Exception] = []
    announced: set[int] = set()
    off_route_fixes = []

    def on_state_change(state: NavigationState) -> None:
        step = state.current_step
        if state.is_navigating and step is not None and state.current_step_index not in announced:
            announced.add(state.current_step_index)
            print(f"Step {state.current_step_index + 1}: {step.instruction}")
        if state.is_off_route:
            off_route_fixes.append(state.current_location)

    engine = NavigationEngine(
        source,
        SavedDirectionsProvider(args.directions_file),
        on_state_change,
        errors.append,
        NavigationConfig.from_config(load_config()),
    )
    if not asyncio.run(engine.start_navigation([pt.coordinate for pt in points])):
        print(f"Error: {errors[-1]}", file=sys.stderr)
        sys.exit(1)

    replayed = source.replay()
    state = engine.stop()
    for error in errors:
        print(f"Warning: {error}", file=sys.stderr)

    print("=== Navigation Summary ===")
    print(f"Fixes:          {replayed}")
    print(f"Final step:     {state.current_step_index + 1} of {len(state.steps)}")
    print(f"Remaining:      {format_distance(state.remaining_distance_m)}")
    print(f"Off route:      {len(off_route_fixes)} fixes")


COMMANDS = {
    "summary": run_summary,
    "encode": run_encode,
    "decode": run_decode,
    "decompress": run_decompress,
    "static-map": run_static_map,
    "navigate": run_navigate,
}


def main(argv: list[str] | None = None) -> None:
    config = load_config()
    parser = build_parser(config)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        COMMANDS[args.command](args)
    except (RouteTrackerError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
