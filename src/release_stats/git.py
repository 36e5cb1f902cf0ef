from __future__ import annotations

import datetime as dt
import logging
import subprocess
from pathlib import Path

from .errors import RepoError
from .models import TagRef, parse_timestamp

logger = logging.getLogger(__name__)


def run_git(args: list[str], cwd: Path, timeout_s: float = 300) -> tuple[int, str, str]:
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=timeout_s,
    )
    return proc.returncode, proc.stdout, proc.stderr


def get_repo_toplevel(candidate: Path) -> Path | None:
    try:
        code, out, _ = run_git(["rev-parse", "--show-toplevel"], cwd=candidate, timeout_s=60)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if code != 0 or not out.strip():
        return None
    return Path(out.strip()).resolve()


class RepositoryState:
    """
    A git checkout whose working tree is moved from release to release.

    The working tree is a single shared resource: `checkout_destructive`
    throws away every local modification and untracked file, so only one
    caller may own an instance, and it must never be pointed at a checkout
    whose state matters.
    """

    def __init__(self, path: Path, *, timeout_s: float = 600) -> None:
        self.path = path
        self.timeout_s = timeout_s

    def _git(self, args: list[str]) -> str:
        try:
            code, out, err = run_git(args, cwd=self.path, timeout_s=self.timeout_s)
        except subprocess.TimeoutExpired as e:
            raise RepoError(f"git {' '.join(args)}: timed out after {self.timeout_s}s") from e
        except OSError as e:
            raise RepoError(f"git: failed to call: {e}") from e
        if code != 0:
            raise RepoError(f"git {' '.join(args)}: {err.strip() or f'exit status {code}'}")
        return out

    def list_tags(self) -> list[TagRef]:
        """All tags sorted by tagger date, each with the commit it points at."""
        out = self._git(
            [
                "for-each-ref",
                "--sort=taggerdate",
                "--format=%(refname:strip=2)\t%(objectname)\t%(*objectname)",
                "refs/tags",
            ]
        )
        tags: list[TagRef] = []
        for line in out.splitlines():
            if not line.strip():
                continue
            parts = line.split("\t")
            name = parts[0].strip()
            obj = parts[1].strip() if len(parts) > 1 else ""
            peeled = parts[2].strip() if len(parts) > 2 else ""
            if name:
                tags.append(TagRef(name=name, commit=peeled or obj))
        return tags

    def has_tag(self, tag: str) -> bool:
        try:
            self._git(["rev-parse", "--verify", "--quiet", f"refs/tags/{tag}^{{commit}}"])
        except RepoError:
            return False
        return True

    def checkout_destructive(self, tag: str) -> None:
        """
        Move the working tree to `tag`, discarding uncommitted changes and
        untracked (including ignored) files first.
        """
        if not self.has_tag(tag):
            raise RepoError(f"no such tag (or not a commit): {tag}")
        logger.debug("checking out %s in %s", tag, self.path)
        self._git(["reset", "--hard", "--quiet", "HEAD"])
        self._git(["clean", "-fdxq"])
        self._git(["checkout", "--force", "--quiet", f"refs/tags/{tag}"])

    def commit_timestamp(self, ref: str) -> dt.datetime:
        out = self._git(["log", "-1", "--format=%cI", f"{ref}^{{commit}}", "--"]).strip()
        try:
            ts = parse_timestamp(out)
        except ValueError:
            ts = None
        if ts is None:
            raise RepoError(f"no commit date for {ref}: {out!r}")
        return ts
