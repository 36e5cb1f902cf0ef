from __future__ import annotations

import argparse
import dataclasses
import json
from pathlib import Path

from .errors import ConfigError

DEFAULT_ARCHIVE_BASE_URL = "https://mirrors.kernel.org/pub/linux/kernel"
DEFAULT_COUNTER_COMMAND = ("tokei", "--output", "json")
COUNT_FIELDS = ("lines", "code", "comments", "blanks")


def load_config(config_path: Path) -> dict:
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"failed to read config: {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config must be a JSON object: {config_path}")
    return data


@dataclasses.dataclass(frozen=True)
class Settings:
    manifest_path: Path | None = None
    output_path: Path = Path("stats/releases.csv")
    repo_path: Path | None = None
    cache_dir: Path | None = Path("cache")
    work_dir: Path = Path("work")
    jobs: int = 2
    all_releases: bool = False
    include_prereleases: bool = False
    skip_tags: tuple[str, ...] = ("v2.6.11",)
    archive_base_url: str = DEFAULT_ARCHIVE_BASE_URL
    archive_name_prefix: str = "linux-"
    counter_command: tuple[str, ...] = DEFAULT_COUNTER_COMMAND
    counter_timeout_s: float = 1800.0
    count_field: str = "lines"
    fetch_timeout_s: float = 60.0
    fetch_attempts: int = 3
    fetch_backoff_s: float = 2.0
    fetch_retry_budget_s: float = 1800.0
    fetch_attempt_timeout_s: float = 900.0
    git_timeout_s: float = 600.0
    verify_cached: bool = False


def _opt_path(value: object) -> Path | None:
    s = str(value or "").strip()
    return Path(s).expanduser() if s else None


def _as_int(config: dict, key: str, default: int, *, minimum: int) -> int:
    raw = config.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _as_float(config: dict, key: str, default: float) -> float:
    raw = config.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _as_str_tuple(config: dict, key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = config.get(key)
    if raw is None:
        return default
    if isinstance(raw, str):
        raw = raw.split()
    if not isinstance(raw, list):
        raise ConfigError(f"{key} must be a list of strings")
    return tuple(str(v).strip() for v in raw if str(v).strip())


def load_settings(config: dict, args: argparse.Namespace | None = None) -> Settings:
    """
    Merge config.json values with command-line overrides.

    Any argument left unset on the command line (None / False) falls back to
    the config value, then to the `Settings` default.
    """
    defaults = Settings()
    cfg = dict(config)

    def override(key: str, attr: str | None = None) -> None:
        if args is None:
            return
        value = getattr(args, attr or key, None)
        if value is not None and value is not False:
            cfg[key] = value

    override("manifest_path", "manifest")
    override("output_path", "output")
    override("repo_path", "repo")
    override("cache_dir", "cache")
    override("work_dir", "work")
    override("jobs")
    override("all_releases", "all")
    override("include_prereleases")

    count_field = str(cfg.get("count_field", defaults.count_field) or defaults.count_field).strip().lower()
    if count_field not in COUNT_FIELDS:
        raise ConfigError(f"count_field must be one of {', '.join(COUNT_FIELDS)}, got {count_field!r}")

    counter_command = _as_str_tuple(cfg, "counter_command", defaults.counter_command)
    if not counter_command:
        raise ConfigError("counter_command must not be empty")

    cache_dir = _opt_path(cfg["cache_dir"]) if "cache_dir" in cfg else defaults.cache_dir

    return Settings(
        manifest_path=_opt_path(cfg.get("manifest_path")),
        output_path=_opt_path(cfg.get("output_path")) or defaults.output_path,
        repo_path=_opt_path(cfg.get("repo_path")),
        cache_dir=cache_dir,
        work_dir=_opt_path(cfg.get("work_dir")) or defaults.work_dir,
        jobs=_as_int(cfg, "jobs", defaults.jobs, minimum=1),
        all_releases=bool(cfg.get("all_releases", defaults.all_releases)),
        include_prereleases=bool(cfg.get("include_prereleases", defaults.include_prereleases)),
        skip_tags=_as_str_tuple(cfg, "skip_tags", defaults.skip_tags),
        archive_base_url=str(cfg.get("archive_base_url") or defaults.archive_base_url).rstrip("/"),
        archive_name_prefix=str(cfg.get("archive_name_prefix", defaults.archive_name_prefix) or ""),
        counter_command=counter_command,
        counter_timeout_s=_as_float(cfg, "counter_timeout_s", defaults.counter_timeout_s),
        count_field=count_field,
        fetch_timeout_s=_as_float(cfg, "fetch_timeout_s", defaults.fetch_timeout_s),
        fetch_attempts=_as_int(cfg, "fetch_attempts", defaults.fetch_attempts, minimum=1),
        fetch_backoff_s=_as_float(cfg, "fetch_backoff_s", defaults.fetch_backoff_s),
        fetch_retry_budget_s=_as_float(cfg, "fetch_retry_budget_s", defaults.fetch_retry_budget_s),
        fetch_attempt_timeout_s=_as_float(cfg, "fetch_attempt_timeout_s", defaults.fetch_attempt_timeout_s),
        git_timeout_s=_as_float(cfg, "git_timeout_s", defaults.git_timeout_s),
        verify_cached=bool(cfg.get("verify_cached", defaults.verify_cached)),
    )
