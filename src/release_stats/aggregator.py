from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Iterable

from .archive import ArchiveSource
from .dataset import sort_records, write_dataset
from .errors import PER_RELEASE_ERRORS, ArchiveError, CountUnavailableError, RepoError
from .git import RepositoryState
from .linecount import LineCountAdapter
from .models import ReleaseDescriptor, SkippedRelease, StatsRecord, format_timestamp
from .version import VersionIdentity

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RunResult:
    records: list[StatsRecord]
    plan_size: int = 0
    analyzed: list[VersionIdentity] = dataclasses.field(default_factory=list)
    reused: list[VersionIdentity] = dataclasses.field(default_factory=list)
    skipped: list[SkippedRelease] = dataclasses.field(default_factory=list)
    fatal_error: CountUnavailableError | None = None

    @property
    def aborted(self) -> bool:
        return self.fatal_error is not None


def find_time_regressions(records: Iterable[StatsRecord]) -> list[tuple[StatsRecord, StatsRecord]]:
    """Pairs (previous, record) where a later version carries an earlier timestamp."""
    out: list[tuple[StatsRecord, StatsRecord]] = []
    prev: StatsRecord | None = None
    for r in sort_records(records):
        if not r.timestamp:
            continue
        if prev is not None and r.timestamp < prev.timestamp:
            out.append((prev, r))
        prev = r
    return out


class StatsAggregator:
    """
    Drives a release plan through checkout/extraction and line counting.

    Tag releases are analyzed one at a time on the calling thread because
    they share one working tree. Archive releases run on a bounded thread
    pool. Records are merged and persisted on the calling thread only, after
    each release, so an interrupted run keeps everything finished so far.
    """

    def __init__(
        self,
        *,
        counter: LineCountAdapter,
        output_path: Path,
        repo: RepositoryState | None = None,
        archives: ArchiveSource | None = None,
        jobs: int = 2,
    ) -> None:
        self.counter = counter
        self.output_path = output_path
        self.repo = repo
        self.archives = archives
        self.jobs = max(1, jobs)

    def analyze_tag(self, descriptor: ReleaseDescriptor) -> StatsRecord:
        if self.repo is None:
            raise RepoError(f"no repository configured for tag {descriptor.locator}")
        self.repo.checkout_destructive(descriptor.locator)
        timestamp = self.repo.commit_timestamp(f"refs/tags/{descriptor.locator}")
        counts = self.counter.count(self.repo.path)
        return StatsRecord(
            version=descriptor.version,
            timestamp=format_timestamp(timestamp),
            total=counts.total,
            languages=counts.languages,
        )

    def analyze_archive(self, descriptor: ReleaseDescriptor) -> StatsRecord:
        if self.archives is None:
            raise ArchiveError(f"no archive source configured for {descriptor.locator}")
        with self.archives.materialize(descriptor) as tree:
            counts = self.counter.count(tree)
        if descriptor.declared_date is None:
            logger.warning("%s: no release date in manifest; timestamp left empty", descriptor.version)
        return StatsRecord(
            version=descriptor.version,
            timestamp=format_timestamp(descriptor.declared_date),
            total=counts.total,
            languages=counts.languages,
        )

    def run(self, plan: Iterable[ReleaseDescriptor], previous: Iterable[StatsRecord] = ()) -> RunResult:
        records: dict[VersionIdentity, StatsRecord] = {r.version: r for r in previous}
        ordered = sorted(plan, key=lambda d: d.version)
        result = RunResult(records=[], plan_size=len(ordered))

        todo: list[ReleaseDescriptor] = []
        for d in ordered:
            if d.version in records:
                result.reused.append(d.version)
            else:
                todo.append(d)
        tags = [d for d in todo if d.is_tag]
        archives = [d for d in todo if not d.is_tag]
        total = len(todo)
        done = 0
        if result.reused:
            logger.info("%d releases already in dataset; %d to analyze", len(result.reused), total)

        settled: set[VersionIdentity] = set()

        def settle(
            d: ReleaseDescriptor,
            fut: Future[StatsRecord] | None = None,
            record: StatsRecord | None = None,
            error: BaseException | None = None,
        ) -> None:
            nonlocal done
            done += 1
            settled.add(d.version)
            if fut is not None:
                error = fut.exception()
                record = None if error is not None else fut.result()
            if error is None and record is not None:
                records[record.version] = record
                write_dataset(self.output_path, records.values())
                result.analyzed.append(record.version)
                logger.info("%d/%d: %s: %d lines", done, total, d.version, record.total)
                return
            if isinstance(error, CountUnavailableError):
                if result.fatal_error is None:
                    result.fatal_error = error
                result.skipped.append(SkippedRelease(label=str(d.version), reason=str(error)))
                logger.error("%d/%d: %s: %s", done, total, d.version, error)
                return
            if isinstance(error, PER_RELEASE_ERRORS):
                result.skipped.append(SkippedRelease(label=str(d.version), reason=str(error)))
                logger.warning("%d/%d: skipping %s (%s): %s", done, total, d.version, d.locator, error)
                return
            assert error is not None
            raise error

        pending: dict[Future[StatsRecord], ReleaseDescriptor] = {}

        def drain(block: bool) -> None:
            if not pending:
                return
            finished, _ = wait(list(pending), timeout=None if block else 0, return_when=FIRST_COMPLETED)
            for fut in sorted(finished, key=lambda f: pending[f].version):
                settle(pending.pop(fut), fut=fut)

        ex = ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="archive")
        try:
            for d in archives:
                pending[ex.submit(self.analyze_archive, d)] = d

            for d in tags:
                if result.aborted:
                    break
                logger.info("building statistics for release: %s", d.locator)
                try:
                    record = self.analyze_tag(d)
                except PER_RELEASE_ERRORS as e:
                    settle(d, error=e)
                else:
                    settle(d, record=record)
                drain(block=False)

            while pending:
                if result.aborted:
                    for fut in list(pending):
                        if fut.cancel():
                            d = pending.pop(fut)
                            settled.add(d.version)
                            result.skipped.append(SkippedRelease(label=str(d.version), reason="run aborted"))
                if pending:
                    drain(block=True)
        finally:
            ex.shutdown(wait=True, cancel_futures=True)

        if result.aborted:
            for d in tags:
                if d.version not in settled:
                    result.skipped.append(SkippedRelease(label=str(d.version), reason="run aborted"))

        result.records = sort_records(records.values())
        for prev, rec in find_time_regressions(result.records):
            logger.warning("timestamp goes backwards: %s (%s) -> %s (%s)", prev.version, prev.timestamp, rec.version, rec.timestamp)
        return result
