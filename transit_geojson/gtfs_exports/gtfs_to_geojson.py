"""Converts a GTFS feed into a GeoJSON FeatureCollection.

Exports every stop as a Point feature and every distinct vehicle path as a
LineString feature carrying its route's names and colours. Paths come from
``shapes.txt`` when a trip declares a shape; otherwise a straight line is
drawn through the trip's stops in ``stop_sequence`` order, once per route.

Inputs:
    - GTFS folder, ``.zip`` archive or URL (see ``gtfs_feed.read_feed``)

Outputs:
    - GeoJSON FeatureCollection written to a file, or to stdout when no
      output path is given. Stop features come first, then path features.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Optional

import geojson

from transit_geojson.gtfs_exports.gtfs_feed import (
    Availability,
    GtfsFeed,
    Trip,
    UnknownAvailability,
    WheelchairBoarding,
    read_feed,
)
from transit_geojson.utils.logging_helper import setup_logging

logger = logging.getLogger(__name__)

# ===========================================================================
# CONFIGURATION
# ===========================================================================

# Feed to convert when no --input is given (folder, .zip or URL)
DEFAULT_GTFS_PATH: Optional[str] = None
# Where to write the GeoJSON; None prints to stdout
DEFAULT_OUTPUT_PATH: Optional[Path] = None
# None keeps the output on a single line
JSON_INDENT: Optional[int] = None
LOG_LEVEL = logging.INFO
# Decimal places kept by the geojson encoder; 15 keeps full float precision
COORDINATE_PRECISION = 15

WHEELCHAIR_LABELS = {
    Availability.INFORMATION_NOT_AVAILABLE: "unknown",
    Availability.AVAILABLE: "available",
    Availability.NOT_AVAILABLE: "not available",
}

# ===========================================================================
# ERRORS
# ===========================================================================


class MissingCoordinateError(ValueError):
    """A trip without a shape visits a stop that has no coordinates."""

    def __init__(self, stop_id: str, trip_id: str) -> None:
        super().__init__(
            f"Stop '{stop_id}' used by trip '{trip_id}' has no coordinates; "
            "cannot draw the trip's path."
        )
        self.stop_id = stop_id
        self.trip_id = trip_id


# ===========================================================================
# FUNCTIONS
# ===========================================================================


def _compact(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Build a property dict, dropping absent values; the first key wins."""
    properties: dict[str, Any] = {}
    for key, value in pairs:
        if value is not None and key not in properties:
            properties[key] = value
    return properties


def wheelchair_label(value: WheelchairBoarding) -> str:
    """Human-readable ``wheelchair_boarding``; unknown codes are stringified."""
    if isinstance(value, UnknownAvailability):
        return str(value.code)
    return WHEELCHAIR_LABELS[value]


def extract_stops(feed: GtfsFeed) -> list[geojson.Feature]:
    """Return one Point feature per stop.

    Stops without coordinates still get a feature, with a null geometry.
    Optional columns (code, parent station, timezone) are left out of the
    properties when blank.
    """
    features = []
    for stop in feed.stops.values():
        properties = _compact(
            [
                ("name", stop.name),
                ("id", stop.id),
                ("description", stop.description),
                ("code", stop.code),
                ("parent_station", stop.parent_station),
                ("timezone", stop.timezone),
                ("wheelchair_boarding", wheelchair_label(stop.wheelchair_boarding)),
            ]
        )
        geometry = None
        if stop.longitude is not None and stop.latitude is not None:
            geometry = geojson.Point(
                [stop.longitude, stop.latitude], precision=COORDINATE_PRECISION
            )
        features.append(geojson.Feature(geometry=geometry, properties=properties))
    return features


def get_route_properties(feed: GtfsFeed, route_id: str) -> Optional[dict[str, Any]]:
    """Return the display properties of a route, or None if it is unknown."""
    route = feed.routes.get(route_id)
    if route is None:
        return None
    return _compact(
        [
            ("route_id", route.id),
            ("route_short_name", route.short_name),
            ("route_long_name", route.long_name),
            ("route_color", str(route.color) if route.color is not None else None),
            ("route_text_color", str(route.text_color) if route.text_color is not None else None),
        ]
    )


def straight_line_between_stops(trip: Trip) -> geojson.LineString:
    """Draw a trip's path through its stops in ``stop_sequence`` order.

    Raises:
        MissingCoordinateError: One of the visited stops has no coordinates.
    """
    coordinates = []
    for stop_time in trip.stop_times:
        stop = stop_time.stop
        if stop.longitude is None or stop.latitude is None:
            raise MissingCoordinateError(stop.id, trip.id)
        coordinates.append([stop.longitude, stop.latitude])
    return geojson.LineString(coordinates, precision=COORDINATE_PRECISION)


def extract_trip_shapes(feed: GtfsFeed) -> list[geojson.Feature]:
    """Return one LineString feature per distinct path.

    A path is identified by the trip's shape, or by its route when the trip
    has no usable shape. Identities are tagged with their kind so that a
    shape and a route sharing the same id do not hide each other. A shape
    id missing from ``shapes.txt`` falls back to the stop-sequence line.

    Raises:
        MissingCoordinateError: A stop-sequence line visits an unlocated stop.
    """
    emitted: set[tuple[str, str]] = set()
    unresolved: set[str] = set()
    features = []

    for trip in feed.trips.values():
        shape = feed.shapes.get(trip.shape_id) if trip.shape_id is not None else None
        if trip.shape_id is not None and shape is None and trip.shape_id not in unresolved:
            unresolved.add(trip.shape_id)
            logger.warning(
                "Shape %s (trip %s) is not in shapes.txt; following the stop sequence instead.",
                trip.shape_id,
                trip.id,
            )

        path_key = ("shape", shape.id) if shape is not None else ("route", trip.route_id)
        if path_key in emitted:
            continue

        if shape is not None:
            geometry = geojson.LineString(
                [[lon, lat] for lon, lat in shape.points], precision=COORDINATE_PRECISION
            )
        else:
            geometry = straight_line_between_stops(trip)

        properties = get_route_properties(feed, trip.route_id)
        if properties is None:
            logger.warning("Trip %s references unknown route %s.", trip.id, trip.route_id)

        features.append(geojson.Feature(geometry=geometry, properties=properties))
        emitted.add(path_key)

    return features


def convert_to_geojson(feed: GtfsFeed) -> geojson.FeatureCollection:
    """Convert a feed into a FeatureCollection: stops first, then paths."""
    features = extract_stops(feed)
    features.extend(extract_trip_shapes(feed))
    return geojson.FeatureCollection(features)


def summarize_stops(feed: GtfsFeed) -> list[str]:
    """Describe each stop on one line, for quick inspection of a feed."""
    lines = [f"There are {len(feed.stops)} stops in the GTFS"]
    for stop in feed.stops.values():
        if stop.longitude is not None and stop.latitude is not None:
            coordinates = f"{stop.longitude};{stop.latitude}"
        else:
            coordinates = "not set"
        lines.append(
            f"Stop {stop.name!r} - {stop.id!r} - code {stop.code or 'none'} | "
            f"description {stop.description!r} | "
            f"parent station {stop.parent_station or 'none'} | "
            f"coordinates {coordinates} | "
            f"timezone {stop.timezone or 'not set'} | "
            f"wheelchair access {wheelchair_label(stop.wheelchair_boarding)}"
        )
    return lines


def save_to_file(
    collection: geojson.FeatureCollection, path: Path, indent: Optional[int] = None
) -> None:
    """Write the collection to *path*, creating parent folders as needed.

    Raises:
        IOError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            geojson.dump(collection, fh, indent=indent)
    except OSError as e:
        raise IOError(f"Could not write GeoJSON {path}: {e}") from e
    logger.info("Saved %d features to: %s", len(collection["features"]), path)


def write_geojson(
    collection: geojson.FeatureCollection,
    output: Optional[Path] = None,
    indent: Optional[int] = None,
) -> None:
    """Write the collection to *output*, or to stdout when it is None."""
    if output is None:
        sys.stdout.write(geojson.dumps(collection, indent=indent))
        sys.stdout.write("\n")
        return
    save_to_file(collection, output, indent)


def run_conversion(
    gtfs_path: str | Path,
    output: Optional[Path] = None,
    indent: Optional[int] = None,
    list_stops: bool = False,
) -> geojson.FeatureCollection:
    """Read a feed, convert it and write the result.

    Raises:
        OSError: Feed not found, or output not writable.
        ValueError: Feed is malformed, or a path cannot be drawn
            (:class:`MissingCoordinateError`).
        RuntimeError: Generic OS error while reading the feed.
    """
    logger.info("Reading GTFS from %s", gtfs_path)
    feed = read_feed(gtfs_path)

    if list_stops:
        for line in summarize_stops(feed):
            logger.info(line)

    logger.info("Extracting spatial features")
    collection = convert_to_geojson(feed)
    logger.info(
        "Built %d stop features and %d path features.",
        len(feed.stops),
        len(collection["features"]) - len(feed.stops),
    )

    logger.info("Saving GeoJSON")
    write_geojson(collection, output, indent)
    return collection


# ===========================================================================
# MAIN
# ===========================================================================


def parse_args(argv: Sequence[str] | None = None) -> tuple[argparse.Namespace, list[str]]:
    """Parse CLI args and return (args, unknown_args)."""
    parser = argparse.ArgumentParser(
        description="Convert a GTFS feed into a GeoJSON FeatureCollection."
    )
    parser.add_argument(
        "-i",
        "--input",
        dest="gtfs",
        default=DEFAULT_GTFS_PATH,
        help="GTFS folder, zip archive or URL of an online GTFS zip",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_PATH,
        help="Output GeoJSON file. Printed to stdout when omitted",
    )
    parser.add_argument(
        "--indent", type=int, default=JSON_INDENT, help="Indent the JSON output"
    )
    parser.add_argument(
        "--list-stops", action="store_true", help="Log a one-line summary of every stop"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args, unknown = parser.parse_known_args(list(argv) if argv is not None else None)
    return args, unknown


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point (notebook-safe). Returns the process exit code."""
    args, _unknown = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else LOG_LEVEL)

    if args.gtfs is None:
        logger.error("No GTFS input given. Use --input or set DEFAULT_GTFS_PATH.")
        return 1

    try:
        run_conversion(args.gtfs, args.output, args.indent, args.list_stops)
    except MissingCoordinateError as e:
        logger.error("Conversion aborted: %s", e)
        return 1
    except (OSError, ValueError, RuntimeError) as e:
        logger.error("ERROR: %s", e)
        return 1

    logger.info("Conversion finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
