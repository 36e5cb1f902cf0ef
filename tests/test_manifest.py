from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from release_stats.errors import ConfigError
from release_stats.manifest import archive_url, load_manifest, select_entries


def test_archive_url_layout() -> None:
    base = "https://mirrors.kernel.org/pub/linux/kernel"
    assert archive_url("2.4.0", base_url=base) == f"{base}/v2.4/linux-2.4.0.tar.gz"
    assert archive_url("1.0", base_url=base) == f"{base}/v1.0/linux-1.0.tar.gz"
    assert archive_url("3.0", base_url=base + "/") == f"{base}/v3.x/linux-3.0.tar.gz"
    assert archive_url("1.1.0", base_url=base, path="v1.1/v1.1.0.tar.gz") == f"{base}/v1.1/v1.1.0.tar.gz"


def test_load_manifest(tmp_path: Path) -> None:
    (tmp_path / "old").mkdir()
    manifest = tmp_path / "releases.yaml"
    manifest.write_text(
        "\n".join(
            [
                "releases:",
                "  - version: '1.0'",
                "    date: 1994-03-14",
                "    important: true",
                "  - version: '1.1.0'",
                "    path: v1.1/v1.1.0.tar.gz",
                "  - version: '0.01'",
                "    file: old/linux-0.01.tar.gz",
                "  - version: '2.0'",
                "    url: https://example.org/linux-2.0.tar.bz2",
                "    date: '1996-06-09T12:00:00+02:00'",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    entries = load_manifest(manifest, base_url="https://mirror.example/kernel")
    assert [e.version for e in entries] == ["1.0", "1.1.0", "0.01", "2.0"]
    assert entries[0].url == "https://mirror.example/kernel/v1.0/linux-1.0.tar.gz"
    assert entries[0].date == dt.datetime(1994, 3, 14, tzinfo=dt.timezone.utc)
    assert entries[0].important is True
    assert entries[1].url == "https://mirror.example/kernel/v1.1/v1.1.0.tar.gz"
    assert entries[1].date is None
    assert entries[2].url == str(tmp_path.resolve() / "old" / "linux-0.01.tar.gz")
    assert entries[3].url == "https://example.org/linux-2.0.tar.bz2"
    assert entries[3].date == dt.datetime(1996, 6, 9, 10, 0, tzinfo=dt.timezone.utc)

    assert [e.version for e in select_entries(entries, all_releases=False)] == ["1.0"]
    assert len(select_entries(entries, all_releases=True)) == 4


def test_unquoted_version_is_rejected(tmp_path: Path) -> None:
    manifest = tmp_path / "releases.yaml"
    manifest.write_text("releases:\n  - version: 1.10\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="quoted string"):
        load_manifest(manifest)


def test_bad_yaml_and_bad_date(tmp_path: Path) -> None:
    manifest = tmp_path / "releases.yaml"
    manifest.write_text("releases: [\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_manifest(manifest)

    manifest.write_text("releases:\n  - version: '1.0'\n    date: someday\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="date"):
        load_manifest(manifest)


def test_empty_manifest(tmp_path: Path) -> None:
    manifest = tmp_path / "releases.yaml"
    manifest.write_text("", encoding="utf-8")
    assert load_manifest(manifest) == []
    with pytest.raises(ConfigError):
        load_manifest(tmp_path / "missing.yaml")
