from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Sequence

from .config import COUNT_FIELDS, DEFAULT_COUNTER_COMMAND
from .errors import CountError, CountUnavailableError
from .models import LineCounts

logger = logging.getLogger(__name__)

# Summary row emitted by tokei next to the real languages.
_SUMMARY_KEYS = {"Total"}


def _language_value(stats: dict, field: str) -> int:
    if field == "lines":
        # tokei < 12 reports `lines`; newer releases only the three parts.
        if "lines" in stats:
            return int(stats.get("lines") or 0)
        return int(stats.get("code") or 0) + int(stats.get("comments") or 0) + int(stats.get("blanks") or 0)
    return int(stats.get(field) or 0)


def normalize_tokei_output(data: object, field: str = "lines") -> LineCounts:
    """Reduce tokei's JSON (any schema version) to {language: count} plus a total."""
    if field not in COUNT_FIELDS:
        raise ValueError(f"unknown count field: {field!r}")
    if not isinstance(data, dict):
        raise CountError("counter output is not a JSON object")
    languages: dict[str, int] = {}
    for name, stats in data.items():
        if name in _SUMMARY_KEYS or not isinstance(stats, dict):
            continue
        try:
            value = _language_value(stats, field)
        except (TypeError, ValueError) as e:
            raise CountError(f"bad counter output for {name}: {e}") from e
        if value > 0:
            languages[str(name)] = value
    return LineCounts(total=sum(languages.values()), languages=dict(sorted(languages.items())))


class LineCountAdapter:
    """
    Runs the external line counter (tokei by default) over a release tree.

    What counts as vendored or generated code is left to the counter's own
    exclusion rules.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_COUNTER_COMMAND,
        *,
        timeout_s: float = 1800,
        field: str = "lines",
    ) -> None:
        if not command:
            raise ValueError("counter command must not be empty")
        if field not in COUNT_FIELDS:
            raise ValueError(f"unknown count field: {field!r}")
        self.command = list(command)
        self.timeout_s = timeout_s
        self.field = field

    def check_available(self) -> None:
        if shutil.which(self.command[0]) is None:
            raise CountUnavailableError(f"line counter not found on PATH: {self.command[0]}")

    def count(self, tree: Path) -> LineCounts:
        try:
            proc = subprocess.run(
                self.command,
                cwd=str(tree),
                capture_output=True,
                text=True,
                timeout=self.timeout_s if self.timeout_s > 0 else None,
            )
        except subprocess.TimeoutExpired as e:
            raise CountError(f"{self.command[0]} timed out after {self.timeout_s}s in {tree}") from e
        except FileNotFoundError as e:
            if not tree.is_dir():
                raise CountError(f"tree does not exist: {tree}") from e
            raise CountUnavailableError(f"{self.command[0]}: failed to call: {e}") from e
        except PermissionError as e:
            raise CountUnavailableError(f"{self.command[0]}: failed to call: {e}") from e

        if proc.returncode != 0:
            raise CountError(f"{self.command[0]} error: {proc.stderr.strip()[:500] or f'exit status {proc.returncode}'}")
        try:
            data = json.loads(proc.stdout)
        except ValueError as e:
            raise CountError(f"{self.command[0]} produced invalid JSON: {e}") from e

        counts = normalize_tokei_output(data, self.field)
        if counts.total <= 0:
            raise CountError(f"{self.command[0]} counted no lines in {tree}")
        logger.debug("counted %d %s in %s", counts.total, self.field, tree)
        return counts
