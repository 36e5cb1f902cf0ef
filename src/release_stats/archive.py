from __future__ import annotations

import bz2
import contextlib
import dataclasses
import gzip
import http.client
import logging
import lzma
import math
import os
import shutil
import tarfile
import tempfile
import time
import urllib.error
import urllib.request
import zlib
from pathlib import Path
from typing import BinaryIO, Callable, Iterator
from urllib.parse import urlparse
from urllib.request import url2pathname

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_before_delay,
    wait_exponential,
)

from . import __version__
from .errors import ArchiveError, NetworkError
from .models import ReleaseDescriptor

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error, lzma.LZMAError)
_RETRY_HTTP_CODES = {408, 429}
_CHUNK = 1 << 20


@dataclasses.dataclass(frozen=True)
class Codec:
    name: str
    magic: bytes
    decode: Callable[[BinaryIO], BinaryIO]
    offset: int = 0

    def matches(self, head: bytes) -> bool:
        return head[self.offset : self.offset + len(self.magic)] == self.magic


def _passthrough(f: BinaryIO) -> BinaryIO:
    return f


# Sniffed in order; the uncompressed-tar check looks past the first header bytes.
CODECS: list[Codec] = [
    Codec("gzip", b"\x1f\x8b", lambda f: gzip.GzipFile(fileobj=f, mode="rb")),
    Codec("bzip2", b"BZh", lambda f: bz2.BZ2File(f, mode="rb")),
    Codec("xz", b"\xfd7zXZ\x00", lambda f: lzma.LZMAFile(f, mode="rb", format=lzma.FORMAT_XZ)),
    Codec("lzma", b"\x5d\x00\x00", lambda f: lzma.LZMAFile(f, mode="rb", format=lzma.FORMAT_ALONE)),
    Codec("tar", b"ustar", _passthrough, offset=257),
]

_SNIFF_BYTES = 512


def sniff_codec(head: bytes) -> Codec:
    for codec in CODECS:
        if codec.matches(head):
            return codec
    if head[:2] == b"\x1f\x9d":
        raise ArchiveError("compress(1) .Z archives are not supported; use a gzip/bzip2/xz copy of the release")
    raise ArchiveError("unrecognized archive format")


@contextlib.contextmanager
def open_tar_stream(archive: Path) -> Iterator[tarfile.TarFile]:
    """Open `archive` as a streaming tar reader, picking the decompressor by magic bytes."""
    try:
        raw = archive.open("rb")
    except OSError as e:
        raise ArchiveError(f"failed to open archive: {archive}: {e}") from e
    with raw:
        head = raw.read(_SNIFF_BYTES)
        codec = sniff_codec(head)
        raw.seek(0)
        decoded = codec.decode(raw)
        try:
            with tarfile.open(fileobj=decoded, mode="r|") as tar:
                yield tar
        except ArchiveError:
            raise
        except _DECODE_ERRORS as e:
            raise ArchiveError(f"bad {codec.name} archive: {archive}: {e}") from e
        finally:
            if decoded is not raw:
                decoded.close()


def verify_archive(archive: Path) -> int:
    """Read every member header; returns the number of regular files."""
    files = 0
    with open_tar_stream(archive) as tar:
        for member in tar:
            if member.isfile():
                files += 1
    if files == 0:
        raise ArchiveError(f"archive contains no files: {archive}")
    return files


def _strip_single_top_dir(dest: Path) -> Path:
    entries = list(dest.iterdir())
    if len(entries) == 1 and entries[0].is_dir() and not entries[0].is_symlink():
        return entries[0]
    return dest


def _has_files(root: Path) -> bool:
    for _dirpath, _dirnames, filenames in os.walk(root):
        if filenames:
            return True
    return False


def _is_local(locator: str) -> bool:
    return urlparse(locator).scheme.lower() in ("", "file")


def _local_path(locator: str) -> Path:
    parsed = urlparse(locator)
    if parsed.scheme.lower() == "file":
        return Path(url2pathname(parsed.path))
    return Path(locator).expanduser()


class _TransientFetchError(NetworkError):
    pass


class ArchiveSource:
    """
    Fetches release tarballs and unpacks them into scratch directories.

    Every call works on its own files, so distinct releases can be fetched
    and extracted from several threads at once.
    """

    def __init__(
        self,
        *,
        work_dir: Path,
        cache_dir: Path | None = None,
        timeout_s: float = 60,
        attempts: int = 3,
        backoff_s: float = 2.0,
        retry_budget_s: float = 1800,
        attempt_timeout_s: float = 900,
        verify_cached: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.work_dir = work_dir
        self.cache_dir = cache_dir
        self.timeout_s = timeout_s
        self.attempts = max(1, attempts)
        self.backoff_s = backoff_s
        self.retry_budget_s = retry_budget_s
        self.attempt_timeout_s = attempt_timeout_s
        self.verify_cached = verify_cached
        self._sleep = sleep
        self._clock = clock

    def _download_once(self, url: str, dest: Path, deadline: float) -> None:
        req = urllib.request.Request(url, headers={"User-Agent": f"release-stats/{__version__}"})
        attempt_deadline = deadline
        if self.attempt_timeout_s > 0:
            attempt_deadline = min(deadline, self._clock() + self.attempt_timeout_s)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                code = int(getattr(resp, "status", 0) or 200)
                if not 200 <= code < 300:
                    raise _TransientFetchError(f"HTTP {code}")
                expected = resp.headers.get("Content-Length") if resp.headers else None
                written = 0
                with dest.open("wb") as f:
                    while True:
                        chunk = resp.read(_CHUNK)
                        if not chunk:
                            break
                        f.write(chunk)
                        written += len(chunk)
                        # urlopen's timeout bounds single reads only.
                        if self._clock() > attempt_deadline:
                            raise _TransientFetchError(f"download too slow: {written} bytes before the time limit")
        except urllib.error.HTTPError as e:
            if e.code in _RETRY_HTTP_CODES or e.code >= 500:
                raise _TransientFetchError(f"HTTP {e.code}") from e
            raise NetworkError(f"failed to download: {url}: HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise _TransientFetchError(str(e.reason)) from e
        except (TimeoutError, http.client.HTTPException, ConnectionError) as e:
            raise _TransientFetchError(str(e) or type(e).__name__) from e
        if expected and expected.isdigit() and int(expected) != written:
            raise _TransientFetchError(f"truncated download: got {written} of {expected} bytes")

    def _log_retry(self, url: str) -> Callable[[RetryCallState], None]:
        def log(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "download failed (%s), attempt %d/%d; retrying in %.1fs: %s",
                error,
                state.attempt_number,
                self.attempts,
                delay,
                url,
            )

        return log

    def download(self, url: str, dest: Path) -> None:
        """Download `url` into `dest`, retrying transient failures with exponential backoff."""
        stop = stop_after_attempt(self.attempts)
        deadline = math.inf
        if self.retry_budget_s > 0:
            stop = stop | stop_before_delay(self.retry_budget_s)
            deadline = self._clock() + self.retry_budget_s
        retrying = Retrying(
            stop=stop,
            wait=wait_exponential(multiplier=self.backoff_s),
            retry=retry_if_exception_type(_TransientFetchError),
            before_sleep=self._log_retry(url),
            sleep=self._sleep,
        )
        try:
            retrying(self._download_once, url, dest, deadline)
        except RetryError as e:
            last = e.last_attempt.exception()
            raise NetworkError(
                f"failed to download: {url}: {last} (after {e.last_attempt.attempt_number} attempts)"
            ) from last

    def _cached_path(self, url: str) -> Path | None:
        if self.cache_dir is None:
            return None
        name = Path(urlparse(url).path).name
        if not name:
            return None
        return self.cache_dir / name

    def ensure_cached(self, url: str, *, verify: bool | None = None) -> Path:
        """Return a verified local copy of `url` from the cache, downloading it if needed."""
        target = self._cached_path(url)
        if target is None:
            raise NetworkError(f"no cache directory configured for: {url}")
        if verify is None:
            verify = self.verify_cached
        if target.is_file():
            if not verify:
                return target
            try:
                verify_archive(target)
                return target
            except ArchiveError as e:
                logger.warning("ignoring bad archive: %s: %s", target, e)
                target.unlink()

        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=target.name + ".", suffix=".part", dir=target.parent)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            logger.info("downloading %s -> %s", url, target)
            self.download(url, tmp)
            verify_archive(tmp)
            os.replace(tmp, target)
        finally:
            if tmp.exists():
                tmp.unlink()
        return target

    def _discard_cached(self, url: str, archive: Path) -> None:
        if _is_local(url) or archive != self._cached_path(url):
            return
        logger.warning("removing unusable cached archive: %s", archive)
        archive.unlink(missing_ok=True)

    def verify(self, url: str) -> Path:
        """Make sure `url` is available as a valid archive; remote archives end up in the cache."""
        if _is_local(url):
            path = _local_path(url)
            if not path.is_file():
                raise NetworkError(f"archive not found: {path}")
            verify_archive(path)
            return path
        return self.ensure_cached(url, verify=True)

    @contextlib.contextmanager
    def fetch(self, url: str) -> Iterator[Path]:
        """
        Yield a local archive file for `url`.

        Local paths and file:// URLs are used in place. Remote archives go
        through the cache when one is configured, otherwise into a temporary
        file that is removed on exit.
        """
        if _is_local(url):
            path = _local_path(url)
            if not path.is_file():
                raise NetworkError(f"archive not found: {path}")
            yield path
            return

        if self.cache_dir is not None:
            yield self.ensure_cached(url)
            return

        self.work_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix="download-", suffix=".part", dir=self.work_dir)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            logger.info("downloading %s", url)
            self.download(url, tmp)
            yield tmp
        finally:
            if tmp.exists():
                tmp.unlink()

    def extract(self, archive: Path, dest: Path) -> Path:
        """
        Unpack `archive` into `dest` and return the tree root.

        A single top-level directory (`linux-2.4.0/`) is stripped so the root
        matches a git checkout. An archive without any file is an error.
        """
        dest.mkdir(parents=True, exist_ok=True)
        with open_tar_stream(archive) as tar:
            try:
                tar.extractall(dest, filter="data")
            except tarfile.FilterError as e:
                raise ArchiveError(f"unsafe archive member: {archive}: {e}") from e
        root = _strip_single_top_dir(dest)
        if not _has_files(root):
            raise ArchiveError(f"archive extracted to no files: {archive}")
        return root

    @contextlib.contextmanager
    def materialize(self, descriptor: ReleaseDescriptor) -> Iterator[Path]:
        """Fetch and extract one release into a scratch directory removed on exit."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix=f"release-{descriptor.version}-", dir=self.work_dir))
        try:
            with self.fetch(descriptor.locator) as archive:
                try:
                    tree = self.extract(archive, scratch)
                except ArchiveError:
                    self._discard_cached(descriptor.locator, archive)
                    raise
            yield tree
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
