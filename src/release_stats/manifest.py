from __future__ import annotations

from pathlib import Path

import yaml

from .config import DEFAULT_ARCHIVE_BASE_URL
from .errors import ConfigError
from .models import ManifestEntry, parse_timestamp


def archive_url(version: str, *, base_url: str = DEFAULT_ARCHIVE_BASE_URL, prefix: str = "linux-", path: str = "") -> str:
    """
    Download URL for an archived release.

    Mirrors keep one directory per release series: `v2.4/linux-2.4.0.tar.gz`
    up to the 2.6 series, `v3.x/linux-3.0.tar.gz` after it.
    """
    base = base_url.rstrip("/")
    if path:
        return f"{base}/{path.lstrip('/')}"
    parts = version.split(".")
    major = parts[0]
    minor = parts[1] if len(parts) > 1 else "x"
    if major.isdigit() and int(major) >= 3:
        minor = "x"
    return f"{base}/v{major}.{minor}/{prefix}{version}.tar.gz"


def _entry_from_raw(raw: object, index: int, *, base_url: str, prefix: str, manifest_dir: Path) -> ManifestEntry:
    if not isinstance(raw, dict):
        raise ConfigError(f"releases[{index}] must be a mapping")
    version = raw.get("version")
    if not isinstance(version, str) or not version.strip():
        # Unquoted YAML versions turn into floats (1.10 -> 1.1).
        raise ConfigError(f"releases[{index}].version must be a quoted string, got {version!r}")
    version = version.strip()

    url = str(raw.get("url") or "").strip()
    path = str(raw.get("path") or "").strip()
    local = str(raw.get("file") or "").strip()
    if local:
        p = Path(local).expanduser()
        url = str(p if p.is_absolute() else (manifest_dir / p))
    elif not url:
        url = archive_url(version, base_url=base_url, prefix=prefix, path=path)

    try:
        date = parse_timestamp(raw.get("date"))
    except ValueError:
        raise ConfigError(f"releases[{index}].date is not an ISO date: {raw.get('date')!r}") from None

    return ManifestEntry(version=version, url=url, date=date, important=bool(raw.get("important", False)))


def load_manifest(
    path: Path,
    *,
    base_url: str = DEFAULT_ARCHIVE_BASE_URL,
    prefix: str = "linux-",
) -> list[ManifestEntry]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"failed to read manifest: {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse manifest: {path}: {e}") from e

    if data is None:
        return []
    if isinstance(data, dict):
        releases = data.get("releases") or []
    else:
        releases = data
    if not isinstance(releases, list):
        raise ConfigError(f"manifest `releases` must be a list: {path}")

    manifest_dir = path.resolve().parent
    return [
        _entry_from_raw(raw, i, base_url=base_url, prefix=prefix, manifest_dir=manifest_dir)
        for i, raw in enumerate(releases)
    ]


def select_entries(entries: list[ManifestEntry], *, all_releases: bool) -> list[ManifestEntry]:
    if all_releases:
        return list(entries)
    return [e for e in entries if e.important]
