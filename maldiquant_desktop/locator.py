"""Executable discovery: find a working R installation.

Search order
────────────
  1. Bundled copy shipped next to the application (``R-portable``).
  2. Versioned system installs under the platform's program directories,
     newest version first.
  3. Windows registry ``InstallPath`` entries written by the R installer.
  4. Bare command names on ``PATH``.

Every candidate is verified by running ``<candidate> --version`` before it
is accepted.  A candidate that exists but does not run (corrupt install,
wrong architecture) is skipped and the search continues.  Within an install
directory ``Rscript`` is preferred over ``R``: the script runner behaves
better when spawned without a terminal.
"""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Mapping, Optional, Sequence

from maldiquant_desktop.config import LocatorConfig, resource_path
from maldiquant_desktop.models import ExecutableCandidate, InvocationMode

logger = logging.getLogger(__name__)

Verifier = Callable[[str], bool]

_SCRIPT_RUNNER = "Rscript"
_DIRECT_INTERPRETER = "R"


def clean_env() -> dict:
    """Return os.environ without DYLD_* keys.

    PyInstaller sets DYLD_LIBRARY_PATH / DYLD_FRAMEWORK_PATH to point at
    bundled libraries.  An external R binary spawned with those set loads the
    wrong dylibs and crashes.
    """
    return {k: v for k, v in os.environ.items() if not k.startswith("DYLD_")}


def verify_executable(path: str, timeout: float = 10.0) -> bool:
    """Return True if ``path --version`` runs and exits cleanly."""
    try:
        r = subprocess.run(
            [path, "--version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=clean_env(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("verify %s raised: %s", path, exc)
        return False
    logger.debug("verify %s → rc=%s", path, r.returncode)
    return r.returncode == 0


def executable_name(base: str, platform: str = sys.platform) -> str:
    return f"{base}.exe" if platform == "win32" else base


def invocation_mode_for(path: str) -> InvocationMode:
    """Infer the invocation mode from the executable's file name."""
    stem = Path(path).name.lower()
    if stem.endswith(".exe"):
        stem = stem[:-4]
    if stem == _SCRIPT_RUNNER.lower():
        return InvocationMode.SCRIPT_RUNNER
    return InvocationMode.DIRECT_INTERPRETER


def executables_in(
    bin_dirs: Iterable[Path], source: str, platform: str = sys.platform
) -> Iterator[ExecutableCandidate]:
    """Yield existing R executables in ``bin_dirs``, script runner first."""
    bin_dirs = list(bin_dirs)
    for base in (_SCRIPT_RUNNER, _DIRECT_INTERPRETER):
        name = executable_name(base, platform)
        for bin_dir in bin_dirs:
            path = bin_dir / name
            if path.is_file():
                yield ExecutableCandidate(
                    path=str(path), mode=invocation_mode_for(name), source=source
                )


class ResolutionStrategy:
    """One way of finding R.  Subclasses yield unverified candidates."""

    name = "strategy"

    def candidates(self) -> Iterable[ExecutableCandidate]:
        raise NotImplementedError

    def resolve(self, verify: Verifier) -> Optional[ExecutableCandidate]:
        for candidate in self.candidates():
            if verify(candidate.path):
                return candidate
            logger.info("[%s] rejected %s (failed --version)", self.name, candidate.path)
        return None


class BundledRuntimeStrategy(ResolutionStrategy):
    name = "bundled"

    def __init__(self, runtime_dir: Path, platform: str = sys.platform):
        self.runtime_dir = Path(runtime_dir)
        self.platform = platform

    def candidates(self) -> Iterable[ExecutableCandidate]:
        bin_dir = self.runtime_dir / "bin"
        bin_dirs = [bin_dir / "x64", bin_dir] if self.platform == "win32" else [bin_dir]
        return executables_in(bin_dirs, self.name, self.platform)


@dataclass(frozen=True)
class InstallLayout:
    """Where versioned installs live: ``<base>/<prefix><version>/<bin_subdir>``."""

    base: Path
    version_prefix: str = ""
    bin_subdirs: tuple[str, ...] = ("bin",)

    def version_dirs(self) -> list[Path]:
        """Version directories, lexicographically last (newest) first."""
        try:
            entries = [
                d for d in self.base.iterdir()
                if d.is_dir() and d.name.startswith(self.version_prefix)
            ]
        except OSError:
            return []
        return sorted(entries, key=lambda d: d.name, reverse=True)


def default_layouts(
    platform: str = sys.platform,
    environ: Optional[Mapping[str, str]] = None,
    extra_roots: Sequence[str] = (),
) -> list[InstallLayout]:
    environ = os.environ if environ is None else environ
    layouts: list[InstallLayout] = []

    if platform == "win32":
        roots: list[str] = []
        for var in ("ProgramFiles", "ProgramW6432", "ProgramFiles(x86)"):
            value = environ.get(var)
            if value and value not in roots:
                roots.append(value)
        if not roots:
            roots.append(r"C:\Program Files")
        for root in roots:
            layouts.append(InstallLayout(Path(root) / "R", "R-", ("bin/x64", "bin")))
    elif platform == "darwin":
        layouts.append(InstallLayout(
            Path("/Library/Frameworks/R.framework/Versions"), "", ("Resources/bin",)
        ))
    else:
        layouts.append(InstallLayout(Path("/opt/R"), "", ("bin",)))

    for root in extra_roots:
        layouts.append(InstallLayout(Path(root), "", ("bin/x64", "bin", "Resources/bin")))
    return layouts


class ProgramDirectoryStrategy(ResolutionStrategy):
    name = "program-files"

    def __init__(self, layouts: Sequence[InstallLayout], platform: str = sys.platform):
        self.layouts = list(layouts)
        self.platform = platform

    def candidates(self) -> Iterable[ExecutableCandidate]:
        for layout in self.layouts:
            for version_dir in layout.version_dirs():
                bin_dirs = [version_dir / sub for sub in layout.bin_subdirs]
                yield from executables_in(bin_dirs, self.name, self.platform)


_REGISTRY_KEYS = (r"SOFTWARE\R-core\R64", r"SOFTWARE\R-core\R")


def read_registry_install_paths() -> list[str]:
    """Return R ``InstallPath`` values from the Windows registry (read-only)."""
    if sys.platform != "win32":
        return []
    import winreg  # noqa: PLC0415  (Windows only)

    paths: list[str] = []
    for hive in (winreg.HKEY_LOCAL_MACHINE, winreg.HKEY_CURRENT_USER):
        for key_path in _REGISTRY_KEYS:
            try:
                with winreg.OpenKey(hive, key_path) as key:
                    value, _ = winreg.QueryValueEx(key, "InstallPath")
            except OSError:
                continue
            if value and value not in paths:
                paths.append(value)
    return paths


class RegistryStrategy(ResolutionStrategy):
    name = "registry"

    def __init__(
        self,
        reader: Callable[[], list[str]] = read_registry_install_paths,
        platform: str = sys.platform,
    ):
        self.reader = reader
        self.platform = platform

    def candidates(self) -> Iterable[ExecutableCandidate]:
        for install_path in self.reader():
            bin_dir = Path(install_path) / "bin"
            yield from executables_in([bin_dir / "x64", bin_dir], self.name, self.platform)


class SearchPathStrategy(ResolutionStrategy):
    """Resolve bare command names through PATH.

    Known limitation: when a name cannot be resolved to an absolute path the
    bare name is tried as-is, which depends on the spawning shell's PATH and
    is unreliable under restricted shells.
    """

    name = "path"

    def __init__(
        self,
        commands: Sequence[str] = (_SCRIPT_RUNNER, _DIRECT_INTERPRETER),
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.commands = list(commands)
        self.which = which

    def candidates(self) -> Iterable[ExecutableCandidate]:
        for command in self.commands:
            resolved = self.which(command)
            if resolved is None:
                logger.warning(
                    "Could not resolve %r to an absolute path — trying the bare name",
                    command,
                )
                resolved = command
            yield ExecutableCandidate(
                path=resolved, mode=invocation_mode_for(command), source=self.name
            )


class ExecutableLocator:
    """Run resolution strategies in order until one yields a verified R."""

    def __init__(
        self,
        strategies: Sequence[ResolutionStrategy],
        verifier: Optional[Verifier] = None,
    ):
        self.strategies = list(strategies)
        self.verifier = verifier or verify_executable
        self.tried: list[str] = []

    @classmethod
    def from_config(cls, config: Optional[LocatorConfig] = None) -> ExecutableLocator:
        config = config or LocatorConfig()
        strategies: list[ResolutionStrategy] = [
            BundledRuntimeStrategy(resource_path(config.bundled_dir)),
            ProgramDirectoryStrategy(default_layouts(extra_roots=config.extra_roots)),
        ]
        if config.use_registry:
            strategies.append(RegistryStrategy())
        strategies.append(SearchPathStrategy(config.path_commands))

        timeout = config.verify_timeout_seconds
        return cls(strategies, verifier=lambda path: verify_executable(path, timeout))

    def _verify(self, path: str) -> bool:
        self.tried.append(path)
        return self.verifier(path)

    def locate(self) -> Optional[ExecutableCandidate]:
        """Return the first verified candidate, or None once every strategy fails."""
        self.tried = []
        for strategy in self.strategies:
            logger.debug("Trying strategy %s", strategy.name)
            candidate = strategy.resolve(self._verify)
            if candidate is not None:
                logger.info(
                    "Found R via %s: %s (%s)",
                    strategy.name, candidate.path, candidate.mode.value,
                )
                return candidate
        logger.error(
            "No working R found — checked %d candidate(s) across %d strategies",
            len(self.tried), len(self.strategies),
        )
        return None
