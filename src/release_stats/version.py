from __future__ import annotations

import dataclasses
import functools
import posixpath
import re
from urllib.parse import urlparse

from .errors import ParseError

ARCHIVE_EXTENSIONS = (
    ".tar.gz",
    ".tar.bz2",
    ".tar.xz",
    ".tar.lzma",
    ".tar.Z",
    ".tgz",
    ".tbz2",
    ".tbz",
    ".txz",
    ".tar",
)

PROJECT_PREFIXES = ("linux-",)

_VERSION_RE = re.compile(
    r"^(?P<release>\d+(?:\.\d+)*)"
    r"(?P<letter>[a-z])?"
    r"(?:-?pl(?P<pl>\d+))?"
    r"(?:-?(?P<pre>rc|pre)(?P<pre_n>\d*))?$"
)

# Pre-release stages sort before the final release they lead up to.
_STAGE_RANK = {"pre": 0, "rc": 1, "": 2}


def _normalize_release(parts: tuple[int, ...]) -> tuple[int, ...]:
    release = parts + (0,) * max(0, 3 - len(parts))
    while len(release) > 3 and release[-1] == 0:
        release = release[:-1]
    return release


@functools.total_ordering
@dataclasses.dataclass(frozen=True)
class VersionIdentity:
    """
    A release version, comparable across tag names and tarball names.

    `release` always has at least three components; `v5.10` and
    `linux-5.10.0.tar.gz` both become (5, 10, 0).
    """

    release: tuple[int, ...]
    letter: str = ""
    patchlevel: int = 0
    pre: str = ""
    pre_number: int = 0

    @property
    def sort_key(self) -> tuple[tuple[int, ...], str, int, int, int]:
        return (self.release, self.letter, self.patchlevel, _STAGE_RANK[self.pre], self.pre_number)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, VersionIdentity):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __str__(self) -> str:
        parts = list(self.release)
        while len(parts) > 2 and parts[-1] == 0:
            parts.pop()
        text = ".".join(str(p) for p in parts) + self.letter
        if self.patchlevel:
            text += f"-pl{self.patchlevel}"
        if self.pre:
            text += f"-{self.pre}{self.pre_number or ''}"
        return text

    @classmethod
    def parse(cls, text: str) -> "VersionIdentity":
        s = _strip_prefixes((text or "").strip().lower())
        m = _VERSION_RE.match(s)
        if m is None:
            raise ParseError(f"not a version: {text!r}")
        release = _normalize_release(tuple(int(p) for p in m.group("release").split(".")))
        pre = m.group("pre") or ""
        return cls(
            release=release,
            letter=m.group("letter") or "",
            patchlevel=int(m.group("pl") or 0),
            pre=pre,
            pre_number=int(m.group("pre_n") or 0) if pre else 0,
        )

    @classmethod
    def parse_from_tag(cls, tag: str) -> "VersionIdentity":
        s = (tag or "").strip()
        if s.startswith("refs/tags/"):
            s = s[len("refs/tags/") :]
        try:
            return cls.parse(s)
        except ParseError:
            raise ParseError(f"unrecognized tag: {tag!r}") from None

    @classmethod
    def parse_from_archive_name(cls, name: str) -> "VersionIdentity":
        s = (name or "").strip()
        if "://" in s:
            s = urlparse(s).path
        s = posixpath.basename(s.replace("\\", "/"))
        for ext in ARCHIVE_EXTENSIONS:
            if s.lower().endswith(ext.lower()):
                s = s[: -len(ext)]
                break
        else:
            raise ParseError(f"not a release archive name: {name!r}")
        try:
            return cls.parse(s)
        except ParseError:
            raise ParseError(f"unrecognized archive name: {name!r}") from None


def _strip_prefixes(s: str) -> str:
    low = s.lower()
    for prefix in PROJECT_PREFIXES:
        if low.startswith(prefix):
            s = s[len(prefix) :]
            low = low[len(prefix) :]
            break
    if low.startswith("v") and low[1:2].isdigit():
        s = s[1:]
    return s


def compare(a: VersionIdentity, b: VersionIdentity) -> int:
    ka, kb = a.sort_key, b.sort_key
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0
