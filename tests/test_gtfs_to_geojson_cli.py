from __future__ import annotations

import json
import shutil
import zipfile
from pathlib import Path

import pytest

from transit_geojson.gtfs_exports import gtfs_to_geojson

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def basic_zip(tmp_path: Path) -> Path:
    """The basic fixture feed packed as a zip archive."""
    path = tmp_path / "basic.zip"
    with zipfile.ZipFile(path, "w") as archive:
        for member in (FIXTURES / "basic_gtfs").iterdir():
            archive.write(member, arcname=member.name)
    return path


def test_main_writes_output_file(tmp_path: Path) -> None:
    out_path = tmp_path / "out" / "feed.geojson"

    exit_code = gtfs_to_geojson.main(
        ["-i", str(FIXTURES / "basic_gtfs"), "-o", str(out_path), "--indent", "2"]
    )

    assert exit_code == 0
    data = json.loads(out_path.read_text(encoding="utf-8"))
    assert data["type"] == "FeatureCollection"
    assert len(data["features"]) == 7


def test_main_prints_to_stdout_without_output(basic_zip: Path, capsys) -> None:
    exit_code = gtfs_to_geojson.main(["--input", str(basic_zip)])

    assert exit_code == 0
    data = json.loads(capsys.readouterr().out)
    assert len(data["features"]) == 7


def test_main_list_stops_logs_summary(tmp_path: Path, caplog) -> None:
    caplog.set_level("INFO")
    exit_code = gtfs_to_geojson.main(
        ["-i", str(FIXTURES / "basic_gtfs"), "-o", str(tmp_path / "a.geojson"), "--list-stops"]
    )

    assert exit_code == 0
    assert "There are 5 stops in the GTFS" in caplog.text


def test_main_ignores_unknown_arguments(tmp_path: Path) -> None:
    """Notebook kernels inject their own flags."""
    exit_code = gtfs_to_geojson.main(
        ["-i", str(FIXTURES / "basic_gtfs"), "-o", str(tmp_path / "a.geojson"), "-f", "kernel.json"]
    )
    assert exit_code == 0


def test_main_without_input_fails(monkeypatch) -> None:
    monkeypatch.setattr(gtfs_to_geojson, "DEFAULT_GTFS_PATH", None)
    assert gtfs_to_geojson.main([]) == 1


def test_main_missing_feed_fails(tmp_path: Path) -> None:
    assert gtfs_to_geojson.main(["-i", str(tmp_path / "nowhere")]) == 1


def test_main_aborts_on_unlocated_stop_in_fallback_path(tmp_path: Path, caplog) -> None:
    feed_dir = tmp_path / "gtfs"
    shutil.copytree(FIXTURES / "empty_shapes_gtfs", feed_dir)
    (feed_dir / "stops.txt").write_text(
        "stop_id,stop_name,stop_lat,stop_lon\nstop2,StopPoint,47.0,1.0\nstop3,Market,,\n",
        encoding="utf-8",
    )
    out_path = tmp_path / "out.geojson"

    exit_code = gtfs_to_geojson.main(["-i", str(feed_dir), "-o", str(out_path)])

    assert exit_code == 1
    assert not out_path.exists()
    assert "Conversion aborted" in caplog.text
    assert "stop3" in caplog.text
