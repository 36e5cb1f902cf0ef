from __future__ import annotations

from pathlib import Path

import pytest

from release_stats.dataset import read_dataset, render_dataset, write_dataset
from release_stats.errors import DatasetError
from release_stats.models import StatsRecord
from release_stats.version import VersionIdentity


def _rec(version: str, timestamp: str, **languages: int) -> StatsRecord:
    return StatsRecord(
        version=VersionIdentity.parse(version),
        timestamp=timestamp,
        total=sum(languages.values()),
        languages=languages,
    )


def test_render_orders_rows_and_language_columns() -> None:
    records = [
        _rec("3.0", "2011-07-22T02:17:23+00:00", C=20, Assembly=2),
        _rec("1.0", "1994-03-14T00:00:00+00:00", C=10),
        _rec("2.6.10", "", C=15, Makefile=1),
    ]
    text = render_dataset(records)
    assert text.splitlines() == [
        "version,timestamp,total,Assembly,C,Makefile",
        "1.0,1994-03-14T00:00:00+00:00,10,,10,",
        "2.6.10,,16,,15,1",
        "3.0,2011-07-22T02:17:23+00:00,22,2,20,",
    ]
    assert render_dataset(list(reversed(records))) == text


def test_render_keeps_one_row_per_version() -> None:
    text = render_dataset([_rec("2.0", "", C=1), _rec("v2.0.0", "", C=5)])
    assert text.splitlines()[1:] == ["2.0,,5,5"]


def test_write_then_read(tmp_path: Path) -> None:
    path = tmp_path / "stats" / "releases.csv"
    records = [_rec("1.0", "1994-03-14T00:00:00+00:00", C=10), _rec("2.6.10", "", C=15, Makefile=1)]
    write_dataset(path, records)
    assert read_dataset(path) == records
    assert sorted(p.name for p in path.parent.iterdir()) == ["releases.csv"]

    first = path.read_bytes()
    write_dataset(path, read_dataset(path))
    assert path.read_bytes() == first


def test_read_missing_or_empty_is_empty(tmp_path: Path) -> None:
    assert read_dataset(tmp_path / "nope.csv") == []
    empty = tmp_path / "empty.csv"
    empty.write_text("\n", encoding="utf-8")
    assert read_dataset(empty) == []


@pytest.mark.parametrize(
    "content, match",
    [
        ("name,date,lines\n1.0,,3\n", "header"),
        ("version,timestamp,total,C\n1.0,,3\n", "columns"),
        ("version,timestamp,total,C\nbanana,,3,3\n", "line 2"),
        ("version,timestamp,total,C\n1.0,,3,3\n1.0.0,,4,4\n", "duplicate"),
        ("version,timestamp,total,C\n1.0,,three,3\n", "integer"),
    ],
)
def test_read_rejects_malformed_dataset(tmp_path: Path, content: str, match: str) -> None:
    path = tmp_path / "bad.csv"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(DatasetError, match=match):
        read_dataset(path)


def test_failed_write_leaves_previous_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "releases.csv"
    write_dataset(path, [_rec("1.0", "", C=1)])
    before = path.read_bytes()

    def boom(src: str, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("release_stats.dataset.os.replace", boom)
    with pytest.raises(DatasetError, match="disk full"):
        write_dataset(path, [_rec("1.0", "", C=1), _rec("2.0", "", C=2)])
    assert path.read_bytes() == before
    assert [p.name for p in tmp_path.iterdir()] == ["releases.csv"]
