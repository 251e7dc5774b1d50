"""Shared helpers for reading GTFS text tables into pandas.

A feed may be an unpacked folder or a ``.zip`` archive. Archives that
wrap their tables in a single top-level folder are handled too.
"""

from __future__ import annotations

import logging
import os
import zipfile
from collections.abc import Mapping, Sequence
from typing import IO, Any, Optional, cast

import pandas as pd

logger = logging.getLogger(__name__)

STANDARD_GTFS_FILES = (
    "agency.txt",
    "stops.txt",
    "routes.txt",
    "trips.txt",
    "stop_times.txt",
    "calendar.txt",
    "calendar_dates.txt",
    "fare_attributes.txt",
    "fare_rules.txt",
    "feed_info.txt",
    "frequencies.txt",
    "shapes.txt",
    "transfers.txt",
)


def _zip_members(archive: zipfile.ZipFile) -> dict[str, str]:
    """Map bare GTFS file names to their member path inside *archive*."""
    members: dict[str, str] = {}
    for name in archive.namelist():
        if name.endswith("/"):
            continue
        base = name.rsplit("/", 1)[-1]
        # First match wins; a feed nested one folder deep is common.
        members.setdefault(base, name)
    return members


def list_gtfs_files(gtfs_path: str) -> set[str]:
    """Return the names of the ``*.txt`` tables present in a folder or zip.

    Raises:
        OSError: ``gtfs_path`` does not exist.
    """
    if not os.path.exists(gtfs_path):
        raise OSError(f"The path '{gtfs_path}' does not exist.")

    if zipfile.is_zipfile(gtfs_path):
        with zipfile.ZipFile(gtfs_path) as archive:
            return {name for name in _zip_members(archive) if name.endswith(".txt")}

    return {name for name in os.listdir(gtfs_path) if name.endswith(".txt")}


def _read_table(source: str | IO[bytes], dtype: Any) -> pd.DataFrame:
    # utf-8-sig strips the BOM some agencies still export.
    return pd.read_csv(source, dtype=dtype, low_memory=False, encoding="utf-8-sig")


def load_gtfs_data(
    gtfs_folder_path: str,
    files: Optional[Sequence[str]] = None,
    dtype: str | type[str] | Mapping[str, Any] = str,
) -> dict[str, pd.DataFrame]:
    """Load one or more GTFS text files into memory.

    Args:
        gtfs_folder_path: Absolute or relative path to the folder
            containing the GTFS feed, or to a ``.zip`` archive of it.
        files: Explicit sequence of file names to load. If ``None``,
            the standard 13 GTFS text files are attempted.
        dtype: Value forwarded to :pyfunc:`pandas.read_csv(dtype=…)` to
            control column dtypes. Supply a mapping for per-column dtypes.

    Returns:
        Mapping of file stem → :class:`pandas.DataFrame`; for example,
        ``data["trips"]`` holds the parsed *trips.txt* table.

    Raises:
        OSError: Folder or archive missing, or one of *files* not present.
        ValueError: Empty file or CSV parser failure.
        RuntimeError: Generic OS error while reading a file.

    Notes:
        All columns default to ``str`` to avoid pandas’ type-inference
        pitfalls (e.g. leading zeros in IDs).
    """
    if not os.path.exists(gtfs_folder_path):
        raise OSError(f"The directory '{gtfs_folder_path}' does not exist.")

    if files is None:
        files = STANDARD_GTFS_FILES

    present = list_gtfs_files(gtfs_folder_path)
    missing = [file_name for file_name in files if file_name not in present]
    if missing:
        raise OSError(f"Missing GTFS files in '{gtfs_folder_path}': {', '.join(missing)}")

    archive = zipfile.ZipFile(gtfs_folder_path) if zipfile.is_zipfile(gtfs_folder_path) else None
    members = _zip_members(archive) if archive is not None else {}

    data: dict[str, pd.DataFrame] = {}
    try:
        for file_name in files:
            key = file_name.replace(".txt", "")
            try:
                if archive is not None:
                    with archive.open(members[file_name]) as handle:
                        df = _read_table(handle, cast("Any", dtype))
                else:
                    file_path = os.path.join(gtfs_folder_path, file_name)
                    df = _read_table(file_path, cast("Any", dtype))
                data[key] = df
                logger.info("Loaded %s (%d records).", file_name, len(df))

            except pd.errors.EmptyDataError as exc:
                raise ValueError(
                    f"File '{file_name}' in '{gtfs_folder_path}' is empty."
                ) from exc

            except pd.errors.ParserError as exc:
                raise ValueError(
                    f"Parser error in '{file_name}' in '{gtfs_folder_path}': {exc}"
                ) from exc

            except OSError as exc:
                raise RuntimeError(
                    f"OS error reading file '{file_name}' in '{gtfs_folder_path}': {exc}"
                ) from exc
    finally:
        if archive is not None:
            archive.close()

    return data
