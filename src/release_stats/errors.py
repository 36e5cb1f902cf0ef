from __future__ import annotations


class ReleaseStatsError(RuntimeError):
    pass


class ConfigError(ReleaseStatsError):
    """Raised when config.json or the release manifest cannot be used."""


class ParseError(ReleaseStatsError, ValueError):
    """Raised for a tag or archive name that is not a recognizable version."""


class CatalogError(ReleaseStatsError):
    pass


class RepoError(ReleaseStatsError):
    pass


class NetworkError(ReleaseStatsError):
    pass


class ArchiveError(ReleaseStatsError):
    pass


class CountError(ReleaseStatsError):
    pass


class CountUnavailableError(CountError):
    """The line counter cannot be run at all; no later release can succeed either."""


class DatasetError(ReleaseStatsError):
    pass


# Failures that only cost the release being analyzed.
PER_RELEASE_ERRORS: tuple[type[ReleaseStatsError], ...] = (RepoError, NetworkError, ArchiveError, CountError)
