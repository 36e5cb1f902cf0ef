from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest


def run_cmd(cmd: list[str], *, cwd: Path, env: dict[str, str] | None = None) -> str:
    proc = subprocess.run(cmd, cwd=str(cwd), env=env, check=True, capture_output=True, text=True)
    return proc.stdout


def commit_all(repo: Path, message: str, date: str) -> None:
    env = os.environ.copy()
    env["GIT_AUTHOR_DATE"] = date
    env["GIT_COMMITTER_DATE"] = date
    run_cmd(["git", "add", "-A"], cwd=repo)
    run_cmd(["git", "commit", "-q", "-m", message], cwd=repo, env=env)


def tag(repo: Path, name: str, date: str, *, annotated: bool = True) -> None:
    env = os.environ.copy()
    env["GIT_COMMITTER_DATE"] = date
    if annotated:
        run_cmd(["git", "tag", "-a", name, "-m", f"Linux {name}"], cwd=repo, env=env)
    else:
        run_cmd(["git", "tag", name], cwd=repo, env=env)


@pytest.fixture
def kernel_repo(tmp_path: Path) -> Path:
    """A git repo with tags v2.0 (one C file) and v3.0 (two C files)."""
    repo = tmp_path / "linux"
    repo.mkdir()
    run_cmd(["git", "init", "-q"], cwd=repo)
    run_cmd(["git", "config", "user.name", "Repo User"], cwd=repo)
    run_cmd(["git", "config", "user.email", "repo@example.com"], cwd=repo)
    run_cmd(["git", "config", "commit.gpgsign", "false"], cwd=repo)
    run_cmd(["git", "config", "tag.gpgsign", "false"], cwd=repo)
    (repo / ".gitignore").write_text("*.o\n", encoding="utf-8")
    (repo / "main.c").write_text("int main(void)\n{\n\treturn 0;\n}\n", encoding="utf-8")
    commit_all(repo, "v2.0", "2011-07-21T19:17:23-07:00")
    tag(repo, "v2.0", "2011-07-21T19:17:23-07:00")
    (repo / "fs.c").write_text("int fs(void)\n{\n\treturn 1;\n}\n", encoding="utf-8")
    commit_all(repo, "v3.0", "2012-01-04T12:00:00+00:00")
    tag(repo, "v3.0", "2012-01-04T12:00:00+00:00", annotated=False)
    return repo


@pytest.fixture
def fake_tokei(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A `tokei` on PATH that counts lines of .c/.h/.S files below the working directory."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "tokei"
    script.write_text(
        "\n".join(
            [
                "#!/usr/bin/env python3",
                "import json",
                "import os",
                "import sys",
                "",
                "LANGS = {'.c': 'C', '.h': 'C Header', '.S': 'Assembly'}",
                "",
                "def main() -> int:",
                "    if sys.argv[1:] != ['--output', 'json']:",
                "        sys.stderr.write('unexpected args: ' + ' '.join(sys.argv) + '\\n')",
                "        return 2",
                "    counts = {}",
                "    for dirpath, dirnames, filenames in os.walk('.'):",
                "        dirnames[:] = [d for d in dirnames if d != '.git']",
                "        for name in filenames:",
                "            lang = LANGS.get(os.path.splitext(name)[1])",
                "            if lang is None:",
                "                continue",
                "            with open(os.path.join(dirpath, name), encoding='utf-8') as f:",
                "                lines = f.read().splitlines()",
                "            blanks = sum(1 for l in lines if not l.strip())",
                "            s = counts.setdefault(lang, {'blanks': 0, 'code': 0, 'comments': 0, 'reports': [], 'children': {}, 'inaccurate': False})",
                "            s['blanks'] += blanks",
                "            s['code'] += len(lines) - blanks",
                "    total = {'blanks': sum(v['blanks'] for v in counts.values()), 'code': sum(v['code'] for v in counts.values()), 'comments': 0, 'reports': [], 'children': {}, 'inaccurate': False}",
                "    counts['Total'] = total",
                "    json.dump(counts, sys.stdout)",
                "    return 0",
                "",
                "if __name__ == '__main__':",
                "    raise SystemExit(main())",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))
    return script
