"""Typed, read-only view of a static GTFS feed.

Turns the raw tables returned by ``load_gtfs_data`` into records keyed by
id: stops, routes, trips (with their ordered stop-times) and shapes.
This is the only place that knows about GTFS column names; the exporters
downstream work on the dataclasses.

Inputs:
    - GTFS folder, ``.zip`` archive or ``http(s)`` URL with ``stops.txt``,
      ``routes.txt``, ``trips.txt``, ``stop_times.txt`` (required) and
      ``shapes.txt`` (optional)

Outputs:
    - A :class:`GtfsFeed` snapshot
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

from transit_geojson.utils.gtfs_helpers import list_gtfs_files, load_gtfs_data

logger = logging.getLogger(__name__)

# ===========================================================================
# CONFIGURATION
# ===========================================================================

REQUIRED_TABLES = ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt")
OPTIONAL_TABLES = ("shapes.txt",)

# GTFS defaults when routes.txt leaves the colour columns blank.
DEFAULT_ROUTE_COLOR = "FFFFFF"
DEFAULT_ROUTE_TEXT_COLOR = "000000"

DOWNLOAD_TIMEOUT = 120  # seconds

# ===========================================================================
# DATA MODEL
# ===========================================================================


class Availability(Enum):
    """GTFS ``wheelchair_boarding`` codes."""

    INFORMATION_NOT_AVAILABLE = 0
    AVAILABLE = 1
    NOT_AVAILABLE = 2


@dataclass(frozen=True)
class UnknownAvailability:
    """A ``wheelchair_boarding`` code outside the GTFS enumeration."""

    code: int


WheelchairBoarding = Union[Availability, UnknownAvailability]


@dataclass(frozen=True)
class RgbColor:
    red: int
    green: int
    blue: int

    @classmethod
    def from_hex(cls, value: str) -> "RgbColor":
        """Parse a GTFS colour such as ``"FF8800"`` (leading ``#`` tolerated)."""
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Invalid color '{value}': expected 6 hex digits.")
        try:
            return cls(int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
        except ValueError as exc:
            raise ValueError(f"Invalid color '{value}': not hexadecimal.") from exc

    def __str__(self) -> str:
        return f"rgb({self.red},{self.green},{self.blue})"


@dataclass(frozen=True)
class Stop:
    id: str
    name: str = ""
    description: str = ""
    code: Optional[str] = None
    parent_station: Optional[str] = None
    timezone: Optional[str] = None
    wheelchair_boarding: WheelchairBoarding = Availability.INFORMATION_NOT_AVAILABLE
    longitude: Optional[float] = None
    latitude: Optional[float] = None


@dataclass(frozen=True)
class Route:
    id: str
    short_name: Optional[str] = None
    long_name: Optional[str] = None
    color: Optional[RgbColor] = None
    text_color: Optional[RgbColor] = None


@dataclass(frozen=True)
class StopTime:
    """A trip's visit to a stop; ``stop`` is already resolved."""

    stop: Stop
    stop_sequence: int


@dataclass(frozen=True)
class Trip:
    id: str
    route_id: str
    shape_id: Optional[str] = None
    stop_times: tuple[StopTime, ...] = ()


@dataclass(frozen=True)
class Shape:
    """Ordered ``(longitude, latitude)`` points of a vehicle path."""

    id: str
    points: tuple[tuple[float, float], ...] = ()


@dataclass(frozen=True)
class GtfsFeed:
    """In-memory snapshot of the tables the exporters need, keyed by id."""

    stops: dict[str, Stop] = field(default_factory=dict)
    routes: dict[str, Route] = field(default_factory=dict)
    trips: dict[str, Trip] = field(default_factory=dict)
    shapes: dict[str, Shape] = field(default_factory=dict)


# ===========================================================================
# FIELD PARSING
# ===========================================================================


def _text(value: Any) -> Optional[str]:
    """Return stripped text, or None for NaN / blank cells."""
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def _float(value: Any, table: str, row_id: str, column: str) -> Optional[float]:
    text = _text(value)
    if text is None:
        return None
    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"{table}: invalid {column} '{text}' for '{row_id}'.") from exc


def _int(value: Any, table: str, row_id: str, column: str) -> int:
    text = _text(value)
    if text is None:
        raise ValueError(f"{table}: missing {column} for '{row_id}'.")
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"{table}: invalid {column} '{text}' for '{row_id}'.") from exc


def _require_columns(df: pd.DataFrame, table: str, required: set[str]) -> None:
    if not required.issubset(df.columns):
        missing = sorted(required.difference(df.columns))
        raise ValueError(f"Missing required columns in {table}: {', '.join(missing)}")


def _require_unique(df: pd.DataFrame, table: str, column: str) -> None:
    duplicated = df.loc[df[column].duplicated(), column]
    if not duplicated.empty:
        raise ValueError(f"{table}: duplicate {column} '{duplicated.iloc[0]}'.")


def parse_availability(raw: Any) -> WheelchairBoarding:
    """Map a raw ``wheelchair_boarding`` cell to its variant.

    Blank cells mean "no information", like ``0``. Integers outside the
    enumeration are kept as :class:`UnknownAvailability`.

    Raises:
        ValueError: The cell is not an integer.
    """
    text = _text(raw)
    if text is None:
        return Availability.INFORMATION_NOT_AVAILABLE
    try:
        code = int(text)
    except ValueError as exc:
        raise ValueError(f"Invalid wheelchair_boarding value '{text}'.") from exc
    try:
        return Availability(code)
    except ValueError:
        return UnknownAvailability(code)


def _color(raw: Any, default: str, route_id: str, column: str) -> RgbColor:
    text = _text(raw) or default
    try:
        return RgbColor.from_hex(text)
    except ValueError as exc:
        raise ValueError(f"routes.txt: {exc} ({column} of route '{route_id}')") from exc


# ===========================================================================
# TABLE BUILDERS
# ===========================================================================


def _build_stops(df: pd.DataFrame) -> dict[str, Stop]:
    _require_columns(df, "stops.txt", {"stop_id"})
    _require_unique(df, "stops.txt", "stop_id")

    stops: dict[str, Stop] = {}
    for row in df.to_dict("records"):
        stop_id = _text(row.get("stop_id"))
        if stop_id is None:
            raise ValueError("stops.txt: row with an empty stop_id.")

        longitude = _float(row.get("stop_lon"), "stops.txt", stop_id, "stop_lon")
        latitude = _float(row.get("stop_lat"), "stops.txt", stop_id, "stop_lat")
        if (longitude is None) != (latitude is None):
            logger.warning(
                "Stop %s has only one of stop_lat/stop_lon; treating it as unlocated.",
                stop_id,
            )
            longitude = latitude = None

        try:
            wheelchair = parse_availability(row.get("wheelchair_boarding"))
        except ValueError as exc:
            raise ValueError(f"stops.txt: {exc} (stop '{stop_id}')") from exc

        stops[stop_id] = Stop(
            id=stop_id,
            name=_text(row.get("stop_name")) or "",
            description=_text(row.get("stop_desc")) or "",
            code=_text(row.get("stop_code")),
            parent_station=_text(row.get("parent_station")),
            timezone=_text(row.get("stop_timezone")),
            wheelchair_boarding=wheelchair,
            longitude=longitude,
            latitude=latitude,
        )
    return stops


def _build_routes(df: pd.DataFrame) -> dict[str, Route]:
    _require_columns(df, "routes.txt", {"route_id"})
    _require_unique(df, "routes.txt", "route_id")

    routes: dict[str, Route] = {}
    for row in df.to_dict("records"):
        route_id = _text(row.get("route_id"))
        if route_id is None:
            raise ValueError("routes.txt: row with an empty route_id.")
        routes[route_id] = Route(
            id=route_id,
            short_name=_text(row.get("route_short_name")),
            long_name=_text(row.get("route_long_name")),
            color=_color(row.get("route_color"), DEFAULT_ROUTE_COLOR, route_id, "route_color"),
            text_color=_color(
                row.get("route_text_color"),
                DEFAULT_ROUTE_TEXT_COLOR,
                route_id,
                "route_text_color",
            ),
        )
    return routes


def _build_shapes(df: Optional[pd.DataFrame]) -> dict[str, Shape]:
    if df is None or df.empty:
        return {}
    _require_columns(
        df, "shapes.txt", {"shape_id", "shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"}
    )

    df = df.copy()
    for col in ("shape_pt_lat", "shape_pt_lon", "shape_pt_sequence"):
        converted = pd.to_numeric(df[col], errors="coerce")
        bad = converted.isna()
        if bad.any():
            first = df.loc[bad].iloc[0]
            raise ValueError(
                f"shapes.txt: invalid {col} '{first[col]}' for shape '{first['shape_id']}'."
            )
        df[col] = converted

    # Stable sort keeps file order among equal sequence numbers.
    df = df.sort_values(by=["shape_id", "shape_pt_sequence"], kind="stable")

    shapes: dict[str, Shape] = {}
    for shape_id, group in df.groupby("shape_id", sort=False):
        points = tuple(
            (float(lon), float(lat))
            for lon, lat in zip(group["shape_pt_lon"], group["shape_pt_lat"], strict=True)
        )
        shapes[str(shape_id)] = Shape(id=str(shape_id), points=points)
    return shapes


def _group_stop_times(
    df: Optional[pd.DataFrame], stops: Mapping[str, Stop]
) -> dict[str, list[StopTime]]:
    if df is None or df.empty:
        return {}
    _require_columns(df, "stop_times.txt", {"trip_id", "stop_id", "stop_sequence"})

    grouped: dict[str, list[StopTime]] = {}
    for row in df.to_dict("records"):
        trip_id = _text(row.get("trip_id"))
        stop_id = _text(row.get("stop_id"))
        if trip_id is None or stop_id is None:
            raise ValueError("stop_times.txt: row with an empty trip_id or stop_id.")
        stop = stops.get(stop_id)
        if stop is None:
            raise ValueError(
                f"stop_times.txt: trip '{trip_id}' references unknown stop '{stop_id}'."
            )
        sequence = _int(row.get("stop_sequence"), "stop_times.txt", trip_id, "stop_sequence")
        grouped.setdefault(trip_id, []).append(StopTime(stop=stop, stop_sequence=sequence))

    for entries in grouped.values():
        entries.sort(key=lambda stop_time: stop_time.stop_sequence)
    return grouped


def _build_trips(df: pd.DataFrame, stop_times: Mapping[str, list[StopTime]]) -> dict[str, Trip]:
    _require_columns(df, "trips.txt", {"trip_id", "route_id"})
    _require_unique(df, "trips.txt", "trip_id")

    trips: dict[str, Trip] = {}
    for row in df.to_dict("records"):
        trip_id = _text(row.get("trip_id"))
        route_id = _text(row.get("route_id"))
        if trip_id is None or route_id is None:
            raise ValueError("trips.txt: row with an empty trip_id or route_id.")
        trips[trip_id] = Trip(
            id=trip_id,
            route_id=route_id,
            shape_id=_text(row.get("shape_id")),
            stop_times=tuple(stop_times.get(trip_id, ())),
        )

    orphans = sorted(set(stop_times).difference(trips))
    if orphans:
        raise ValueError(f"stop_times.txt: references unknown trip '{orphans[0]}'.")
    return trips


def build_feed(tables: Mapping[str, pd.DataFrame]) -> GtfsFeed:
    """Build a :class:`GtfsFeed` from tables keyed by file stem.

    Args:
        tables: Output of ``load_gtfs_data``. ``stops``, ``routes`` and
            ``trips`` are required; ``stop_times`` and ``shapes`` may be
            absent.

    Raises:
        KeyError: A required table is missing from *tables*.
        ValueError: Missing columns, duplicate ids, dangling references
            or unparsable values.
    """
    stops = _build_stops(tables["stops"])
    routes = _build_routes(tables["routes"])
    shapes = _build_shapes(tables.get("shapes"))
    trips = _build_trips(tables["trips"], _group_stop_times(tables.get("stop_times"), stops))

    logger.info(
        "Feed has %d stops, %d routes, %d trips and %d shapes.",
        len(stops),
        len(routes),
        len(trips),
        len(shapes),
    )
    return GtfsFeed(stops=stops, routes=routes, trips=trips, shapes=shapes)


# ===========================================================================
# READING
# ===========================================================================


def download_feed(url: str, destination: Path) -> Path:
    """Download a remote GTFS archive to *destination*."""
    logger.info("Downloading GTFS feed from %s", url)
    with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT) as response:
        with open(destination, "wb") as fh:
            shutil.copyfileobj(response, fh)
    return destination


def read_feed(gtfs_path: str | Path) -> GtfsFeed:
    """Read a GTFS folder, zip archive or URL into a :class:`GtfsFeed`.

    Raises:
        OSError: Feed or one of its required tables cannot be found or
            downloaded.
        ValueError: A table is empty, unparsable or inconsistent.
        RuntimeError: Generic OS error while reading a table.
    """
    source = str(gtfs_path)
    if source.startswith(("http://", "https://")):
        with tempfile.TemporaryDirectory() as tmp_dir:
            local = download_feed(source, Path(tmp_dir) / "gtfs.zip")
            return read_feed(local)

    present = list_gtfs_files(source)
    files = list(REQUIRED_TABLES) + [name for name in OPTIONAL_TABLES if name in present]
    if "shapes.txt" not in present:
        logger.info("Optional file 'shapes.txt' not found; paths will follow stop sequences.")
    return build_feed(load_gtfs_data(source, files=files))
