from __future__ import annotations

import shutil
import zipfile
from pathlib import Path

import pandas as pd
import pytest

from transit_geojson.utils.gtfs_helpers import list_gtfs_files, load_gtfs_data

BASIC_FEED = Path(__file__).resolve().parent / "fixtures" / "basic_gtfs"
FEED_TABLES = {"agency.txt", "stops.txt", "routes.txt", "trips.txt", "stop_times.txt", "shapes.txt"}


def _zip_feed(tmp_path: Path, prefix: str = "") -> str:
    """Pack the basic fixture feed, optionally nesting members under *prefix*."""
    path = tmp_path / "basic.zip"
    with zipfile.ZipFile(path, "w") as archive:
        for member in BASIC_FEED.iterdir():
            archive.write(member, arcname=prefix + member.name)
    return str(path)


def _copy_feed(tmp_path: Path) -> Path:
    folder = tmp_path / "gtfs"
    shutil.copytree(BASIC_FEED, folder)
    return folder


def test_list_gtfs_files_folder_and_zip(tmp_path: Path) -> None:
    """Folders and archives report the same tables."""
    assert list_gtfs_files(str(BASIC_FEED)) == FEED_TABLES
    assert list_gtfs_files(_zip_feed(tmp_path)) == FEED_TABLES


def test_list_gtfs_files_ignores_non_tables(tmp_path: Path) -> None:
    folder = _copy_feed(tmp_path)
    (folder / "README.md").write_text("notes", encoding="utf-8")
    assert "README.md" not in list_gtfs_files(str(folder))


def test_load_basic_feed_keeps_ids_as_text() -> None:
    """Stop code 0001 survives with its leading zeros."""
    data = load_gtfs_data(str(BASIC_FEED), files=("stops.txt", "routes.txt"))

    assert set(data) == {"stops", "routes"}
    stops = data["stops"].set_index("stop_id")
    assert stops.loc["stop2", "stop_code"] == "0001"
    assert data["routes"].loc[0, "route_short_name"] == "100"


@pytest.mark.parametrize("prefix", ["", "feed/"])
def test_load_zipped_feed_matches_folder(tmp_path: Path, prefix: str) -> None:
    """Zip archives, flat or nested one folder deep, load like the folder."""
    files = ("stops.txt", "shapes.txt")
    from_folder = load_gtfs_data(str(BASIC_FEED), files=files)
    from_zip = load_gtfs_data(_zip_feed(tmp_path, prefix), files=files)

    for key in ("stops", "shapes"):
        pd.testing.assert_frame_equal(from_folder[key], from_zip[key])


def test_load_strips_byte_order_mark(tmp_path: Path) -> None:
    folder = _copy_feed(tmp_path)
    stops = folder / "stops.txt"
    stops.write_bytes(b"\xef\xbb\xbf" + stops.read_bytes())

    df = load_gtfs_data(str(folder), files=("stops.txt",))["stops"]

    assert df.columns[0] == "stop_id"


def test_load_header_only_table_is_empty_frame() -> None:
    """The empty-shapes feed has a header-only shapes.txt, which is not an error."""
    folder = BASIC_FEED.parent / "empty_shapes_gtfs"
    shapes = load_gtfs_data(str(folder), files=("shapes.txt",))["shapes"]
    assert shapes.empty
    assert "shape_pt_sequence" in shapes.columns


def test_load_missing_table_is_reported(tmp_path: Path) -> None:
    """Asking for a table the feed lacks raises OSError naming it."""
    with pytest.raises(OSError, match="Missing GTFS files.*calendar.txt"):
        load_gtfs_data(_zip_feed(tmp_path), files=("stops.txt", "calendar.txt"))


def test_load_missing_feed_path(tmp_path: Path) -> None:
    missing = tmp_path / "gone.zip"
    with pytest.raises(OSError, match="gone.zip"):
        load_gtfs_data(str(missing), files=("stops.txt",))


def test_load_zero_byte_table(tmp_path: Path) -> None:
    folder = _copy_feed(tmp_path)
    (folder / "trips.txt").write_text("", encoding="utf-8")
    with pytest.raises(ValueError, match="trips.txt.*empty"):
        load_gtfs_data(str(folder), files=("trips.txt",))


def test_load_unclosed_quote(tmp_path: Path) -> None:
    folder = _copy_feed(tmp_path)
    (folder / "routes.txt").write_text('route_id,route_short_name\nroute1,"100\n', encoding="utf-8")
    with pytest.raises(ValueError, match="Parser error in 'routes.txt'"):
        load_gtfs_data(str(folder), files=("routes.txt",))
