from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .aggregator import RunResult, StatsAggregator
from .archive import ArchiveSource
from .catalog import Catalog, build_catalog
from .config import Settings, load_config, load_settings
from .dataset import read_dataset
from .errors import ArchiveError, CatalogError, ConfigError, CountUnavailableError, DatasetError, NetworkError, RepoError
from .git import RepositoryState, get_repo_toplevel
from .linecount import LineCountAdapter
from .logging_config import LOG_ENV_VAR, setup_logging
from .manifest import load_manifest, select_entries
from .models import ManifestEntry, TagRef

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-stats",
        description="Calculate code statistics across every release of a project, from git tags and archived tarballs.",
        epilog=f"Log level: set {LOG_ENV_VAR}=DEBUG|INFO|WARNING|ERROR (default INFO).",
    )
    parser.add_argument("--repo", type=Path, default=None, help="Analyze release tags of this git checkout (it will be reset and cleaned!).")
    parser.add_argument("--manifest", type=Path, default=None, help="YAML manifest of archived releases.")
    parser.add_argument("--config", type=Path, default=Path("config.json"), help="Path to config.json.")
    parser.add_argument("--output", type=Path, default=None, help="CSV dataset to update (default stats/releases.csv).")
    parser.add_argument("--cache", type=Path, default=None, help="Directory to keep downloaded archives in.")
    parser.add_argument("--work", type=Path, default=None, help="Scratch directory for extracted archives.")
    parser.add_argument("-p", "--jobs", type=int, default=None, help="How many archive releases to fetch and count in parallel.")
    parser.add_argument("--all", action="store_true", help="Analyze every manifest release, not just the important ones.")
    parser.add_argument("--include-prereleases", action="store_true", help="Also analyze release-candidate tags.")
    parser.add_argument("--verify", action="store_true", help="Check that every archive is available and valid, then exit.")
    return parser


def _print_header(*, settings: Settings, verify: bool) -> None:
    lines = [
        "release-stats",
        "",
        f"- Repository: {settings.repo_path or '(none, archives only)'}",
        f"- Manifest: {settings.manifest_path or '(none)'}",
        f"- Output: {settings.output_path}",
        f"- Jobs: {settings.jobs}  Releases: {'all' if settings.all_releases else 'important'}  Pre-releases: {'on' if settings.include_prereleases else 'off'}",
        f"- Mode: {'verify archives' if verify else 'analyze'}",
        "",
    ]
    print("\n".join(lines))


def _print_summary(result: RunResult) -> None:
    print("")
    print(f"Releases in plan: {result.plan_size}")
    print(f"Analyzed: {len(result.analyzed)}  Already in dataset: {len(result.reused)}  Skipped: {len(result.skipped)}")
    for s in result.skipped:
        print(f"  skipped {s.label}: {s.reason}")


def _reject_paths_inside_repo(settings: Settings, top: Path) -> None:
    """Checkouts run `git clean -fdx`, which would delete anything of ours under the repository."""
    root = top.resolve()
    for flag, path in (("--output", settings.output_path), ("--cache", settings.cache_dir), ("--work", settings.work_dir)):
        if path is None:
            continue
        resolved = path.expanduser().resolve()
        if resolved == root or root in resolved.parents:
            raise ConfigError(f"{flag} {path} is inside the repository {top}; choose a directory outside it")


def _load_sources(settings: Settings) -> tuple[list[ManifestEntry], RepositoryState | None, list[TagRef]]:
    entries: list[ManifestEntry] = []
    if settings.manifest_path is not None:
        entries = load_manifest(
            settings.manifest_path,
            base_url=settings.archive_base_url,
            prefix=settings.archive_name_prefix,
        )
        entries = select_entries(entries, all_releases=settings.all_releases)

    repo: RepositoryState | None = None
    tags: list[TagRef] = []
    if settings.repo_path is not None:
        if not settings.repo_path.is_dir():
            raise RepoError(f"missing repository directory: {settings.repo_path}")
        top = get_repo_toplevel(settings.repo_path)
        if top is None:
            raise RepoError(f"not a git repository: {settings.repo_path}")
        _reject_paths_inside_repo(settings, top)
        repo = RepositoryState(top, timeout_s=settings.git_timeout_s)
        tags = repo.list_tags()
    return entries, repo, tags


def _verify_archives(catalog: Catalog, archives: ArchiveSource) -> int:
    failures = 0
    for d in catalog.plan:
        if d.is_tag:
            print(f"verified: {d.version} (tag {d.locator})")
            continue
        try:
            path = archives.verify(d.locator)
        except (NetworkError, ArchiveError) as e:
            failures += 1
            print(f"FAILED: {d.version}: {e}", file=sys.stderr)
            continue
        print(f"verified: {d.version} ({path})")
    return 2 if failures else 0


def run(settings: Settings, *, verify: bool = False) -> int:
    _print_header(settings=settings, verify=verify)
    logger.debug("settings: %s", settings)

    try:
        entries, repo, tags = _load_sources(settings)
        catalog = build_catalog(
            entries,
            tags,
            include_prereleases=settings.include_prereleases,
            skip_tags=settings.skip_tags,
        )
    except (ConfigError, RepoError, CatalogError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"Plan: {len(catalog.plan)} releases ({catalog.tag_count} from tags, {catalog.archive_count} from archives); {len(catalog.skipped)} entries skipped.")

    archives = ArchiveSource(
        work_dir=settings.work_dir,
        cache_dir=settings.cache_dir,
        timeout_s=settings.fetch_timeout_s,
        attempts=settings.fetch_attempts,
        backoff_s=settings.fetch_backoff_s,
        retry_budget_s=settings.fetch_retry_budget_s,
        attempt_timeout_s=settings.fetch_attempt_timeout_s,
        verify_cached=settings.verify_cached,
    )

    if verify:
        return _verify_archives(catalog, archives)

    counter = LineCountAdapter(
        settings.counter_command,
        timeout_s=settings.counter_timeout_s,
        field=settings.count_field,
    )
    try:
        counter.check_available()
        previous = read_dataset(settings.output_path)
    except (CountUnavailableError, DatasetError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    aggregator = StatsAggregator(
        counter=counter,
        output_path=settings.output_path,
        repo=repo,
        archives=archives,
        jobs=settings.jobs,
    )
    try:
        result = aggregator.run(catalog.plan, previous)
    except DatasetError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted; dataset keeps every release finished so far.", file=sys.stderr)
        return 130

    _print_summary(result)
    if result.fatal_error is not None:
        print(f"error: run aborted: {result.fatal_error}", file=sys.stderr)
        return 2
    if not result.records:
        print("No releases could be analyzed.", file=sys.stderr)
        return 1
    print(f"Done. Dataset: {settings.output_path} ({len(result.records)} releases)")
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    setup_logging()
    try:
        settings = load_settings(load_config(args.config), args)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    return run(settings, verify=bool(args.verify))


if __name__ == "__main__":
    raise SystemExit(main())
