"""Fake R executables for supervisor tests.

Each fake is a POSIX shell script that answers ``--version`` like R does and
otherwise runs ``body`` (the ``-e`` script is ignored).
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="fake R executables are shell scripts"
)

_HEADER = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "R scripting front-end version 4.3.2 (2023-10-31)"
  exit 0
fi
"""


def make_fake_r(directory: Path, body: str, name: str = "Rscript") -> Path:
    """Write an executable fake R called ``name`` into ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(_HEADER + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def make_broken_r(directory: Path, name: str = "Rscript") -> Path:
    """An R that exists on disk but fails even ``--version``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\necho 'cannot load R.dll' >&2\nexit 127\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def touch_executable(path: Path) -> Path:
    """Create an empty file standing in for an executable (existence only)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("", encoding="utf-8")
    return path
