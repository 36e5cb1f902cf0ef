from __future__ import annotations

import dataclasses
import logging
from typing import Iterable

from .errors import CatalogError, ParseError
from .models import SOURCE_ARCHIVE, SOURCE_TAG, ManifestEntry, ReleaseDescriptor, SkippedRelease, TagRef
from .version import VersionIdentity

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Catalog:
    plan: list[ReleaseDescriptor]
    skipped: list[SkippedRelease]

    @property
    def tag_count(self) -> int:
        return sum(1 for d in self.plan if d.is_tag)

    @property
    def archive_count(self) -> int:
        return len(self.plan) - self.tag_count


def _archive_descriptors(entries: Iterable[ManifestEntry], skipped: list[SkippedRelease]) -> dict[VersionIdentity, ReleaseDescriptor]:
    out: dict[VersionIdentity, ReleaseDescriptor] = {}
    for entry in entries:
        try:
            version = VersionIdentity.parse(entry.version)
        except ParseError as e:
            logger.warning("skipping manifest entry %r: %s", entry.version, e)
            skipped.append(SkippedRelease(label=entry.version, reason=str(e)))
            continue

        try:
            named = VersionIdentity.parse_from_archive_name(entry.url)
        except ParseError:
            named = None
        if named is not None and named != version:
            logger.warning("manifest entry %s points at an archive named like %s: %s", version, named, entry.url)

        desc = ReleaseDescriptor(version=version, kind=SOURCE_ARCHIVE, locator=entry.url, declared_date=entry.date)
        prev = out.get(version)
        if prev is not None:
            if prev == desc:
                continue
            raise CatalogError(f"conflicting manifest entries for {version}: {prev.locator} vs {entry.url}")
        out[version] = desc
    return out


def _tag_descriptors(
    tags: Iterable[TagRef],
    skipped: list[SkippedRelease],
    *,
    include_prereleases: bool,
    skip_tags: set[str],
) -> dict[VersionIdentity, ReleaseDescriptor]:
    out: dict[VersionIdentity, ReleaseDescriptor] = {}
    for tag in tags:
        if tag.name in skip_tags:
            logger.info("skipping configured tag: %s", tag.name)
            skipped.append(SkippedRelease(label=tag.name, reason="listed in skip_tags"))
            continue
        try:
            version = VersionIdentity.parse_from_tag(tag.name)
        except ParseError as e:
            logger.warning("skipping tag %s: %s", tag.name, e)
            skipped.append(SkippedRelease(label=tag.name, reason=str(e)))
            continue
        if version.is_prerelease and not include_prereleases:
            logger.info("skipping release candidate: %s", tag.name)
            skipped.append(SkippedRelease(label=tag.name, reason="pre-release"))
            continue

        prev = out.get(version)
        if prev is not None:
            raise CatalogError(f"tags {prev.locator} and {tag.name} both name release {version}")
        out[version] = ReleaseDescriptor(version=version, kind=SOURCE_TAG, locator=tag.name)
    return out


def build_catalog(
    manifest: Iterable[ManifestEntry],
    tags: Iterable[TagRef],
    *,
    include_prereleases: bool = False,
    skip_tags: Iterable[str] = (),
) -> Catalog:
    """
    Merge archive manifest entries with discovered tags into one ordered plan.

    A release present both as a tag and as an archive is analyzed from the
    tag. Entries that do not parse are skipped with a warning; a plan that
    ends up empty is an error.
    """
    skipped: list[SkippedRelease] = []
    archives = _archive_descriptors(manifest, skipped)
    by_version = _tag_descriptors(tags, skipped, include_prereleases=include_prereleases, skip_tags=set(skip_tags))

    for version, desc in archives.items():
        if version in by_version:
            logger.debug("archive %s superseded by tag %s", desc.locator, by_version[version].locator)
            skipped.append(SkippedRelease(label=str(version), reason=f"superseded by tag {by_version[version].locator}"))
            continue
        by_version[version] = desc

    if not by_version:
        raise CatalogError("no releases to analyze (empty catalog)")

    plan = [by_version[v] for v in sorted(by_version)]
    return Catalog(plan=plan, skipped=skipped)
