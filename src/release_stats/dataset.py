from __future__ import annotations

import csv
import io
import os
import tempfile
from pathlib import Path
from typing import Iterable

from .errors import DatasetError, ParseError
from .models import StatsRecord
from .version import VersionIdentity

FIXED_COLUMNS = ("version", "timestamp", "total")


def sort_records(records: Iterable[StatsRecord]) -> list[StatsRecord]:
    """Order by version; a later record replaces an earlier one for the same version."""
    by_version: dict[VersionIdentity, StatsRecord] = {}
    for r in records:
        by_version[r.version] = r
    return [by_version[v] for v in sorted(by_version)]


def language_columns(records: Iterable[StatsRecord]) -> list[str]:
    names: set[str] = set()
    for r in records:
        names.update(r.languages)
    return sorted(names)


def render_dataset(records: Iterable[StatsRecord]) -> str:
    rows = sort_records(records)
    languages = language_columns(rows)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([*FIXED_COLUMNS, *languages])
    for r in rows:
        writer.writerow([str(r.version), r.timestamp, r.total, *(r.languages.get(lang, "") for lang in languages)])
    return buf.getvalue()


def write_dataset(path: Path, records: Iterable[StatsRecord]) -> None:
    """
    Write the dataset as CSV through a temp file + rename, so readers only
    ever see the previous or the new complete file.
    """
    content = render_dataset(records)
    tmp_name = ""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = ""
    except OSError as e:
        raise DatasetError(f"failed to write dataset: {path}: {e}") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)


def _int_cell(value: str, *, column: str, line: int) -> int:
    try:
        return int(value)
    except ValueError:
        raise DatasetError(f"line {line}: {column} is not an integer: {value!r}") from None


def read_dataset(path: Path) -> list[StatsRecord]:
    if not path.exists():
        return []
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DatasetError(f"failed to read dataset: {path}: {e}") from e
    if not text.strip():
        return []

    try:
        rows = list(csv.reader(io.StringIO(text, newline="")))
    except csv.Error as e:
        raise DatasetError(f"malformed dataset: {path}: {e}") from e
    header = rows[0]
    if tuple(header[: len(FIXED_COLUMNS)]) != FIXED_COLUMNS:
        raise DatasetError(f"unexpected dataset header in {path}: {header[:3]!r}")
    languages = header[len(FIXED_COLUMNS) :]

    records: list[StatsRecord] = []
    seen: set[VersionIdentity] = set()
    for line, row in enumerate(rows[1:], start=2):
        if not row:
            continue
        if len(row) != len(header):
            raise DatasetError(f"{path}: line {line}: expected {len(header)} columns, got {len(row)}")
        try:
            version = VersionIdentity.parse(row[0])
        except ParseError as e:
            raise DatasetError(f"{path}: line {line}: {e}") from e
        if version in seen:
            raise DatasetError(f"{path}: line {line}: duplicate version {version}")
        seen.add(version)
        counts = {
            lang: _int_cell(cell, column=lang, line=line)
            for lang, cell in zip(languages, row[len(FIXED_COLUMNS) :])
            if cell.strip()
        }
        records.append(
            StatsRecord(
                version=version,
                timestamp=row[1],
                total=_int_cell(row[2], column="total", line=line),
                languages=counts,
            )
        )
    return sort_records(records)
