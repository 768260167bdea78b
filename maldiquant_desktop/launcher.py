"""Process launcher: build the R command line and spawn the Shiny server."""

from __future__ import annotations

import asyncio
import codecs
import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from maldiquant_desktop.config import Config
from maldiquant_desktop.exceptions import LaunchError
from maldiquant_desktop.locator import clean_env
from maldiquant_desktop.models import (
    ExecutableCandidate,
    InvocationMode,
    LaunchSpec,
    OutputBuffer,
    SupervisedProcess,
)

logger = logging.getLogger(__name__)
r_logger = logging.getLogger("maldiquant_desktop.r")

LineCallback = Callable[[str], None]

# Suppresses ~/.Rprofile, site profiles and saved workspaces.  Rscript is
# already non-interactive and does not need it.
ISOLATION_FLAG = "--vanilla"

_READ_CHUNK = 4096


def _r_string(value: str) -> str:
    """Quote ``value`` as a single-quoted R string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def r_path(path: str | Path) -> str:
    """R accepts forward slashes on every platform; backslashes need escaping."""
    return str(path).replace("\\", "/")


def build_r_command(
    app_path: str | Path,
    host: str,
    port: int,
    packages: Iterable[str] = ("shiny",),
) -> str:
    """Generate the inline R script that checks packages and runs the app.

    A missing package stops R with the same wording R itself uses
    (``there is no package called 'X'``) before Shiny is ever loaded.
    """
    required = ["shiny"]
    for pkg in packages:
        if pkg not in required:
            required.append(pkg)
    pkg_vector = ", ".join(f'"{pkg}"' for pkg in required)

    return "\n".join([
        f"for (pkg in c({pkg_vector})) {{",
        "  if (!requireNamespace(pkg, quietly = TRUE)) {",
        "    stop(sprintf(\"there is no package called '%s'\", pkg), call. = FALSE)",
        "  }",
        "}",
        f"options(shiny.port = {int(port)}L, shiny.host = {_r_string(host)})",
        f"shiny::runApp({_r_string(r_path(app_path))}, launch.browser = FALSE)",
    ])


def build_launch_spec(candidate: ExecutableCandidate, config: Config) -> LaunchSpec:
    app_path = config.app.resolved_app_dir()
    return LaunchSpec(
        executable=candidate,
        port=config.server.port,
        host=config.server.host,
        app_path=str(app_path),
        r_command=build_r_command(
            app_path,
            config.server.host,
            config.server.port,
            config.server.required_packages,
        ),
    )


def build_argv(spec: LaunchSpec) -> list[str]:
    argv = [spec.executable.path]
    if spec.executable.mode == InvocationMode.DIRECT_INTERPRETER:
        argv.append(ISOLATION_FLAG)
    argv += ["-e", spec.r_command]
    return argv


async def _pump(
    stream: asyncio.StreamReader,
    buffer: OutputBuffer,
    callbacks: Sequence[LineCallback],
) -> None:
    """Copy a pipe into ``buffer`` and hand each complete line to ``callbacks``."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""

    def _emit(line: str) -> None:
        for callback in callbacks:
            callback(line)

    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        text = decoder.decode(chunk)
        buffer.append(text)
        pending += text
        *lines, pending = pending.split("\n")
        for line in lines:
            _emit(line.rstrip("\r"))
        # Output without newlines (progress bars) is flushed as a line at the buffer limit.
        if len(pending) > buffer.limit:
            _emit(pending)
            pending = ""

    tail = decoder.decode(b"", final=True)
    if tail:
        buffer.append(tail)
        pending += tail
    if pending:
        _emit(pending.rstrip("\r"))


class ProcessLauncher:
    """Spawn R and wire its output streams.

    Must be used from inside a running event loop.
    """

    def __init__(self, buffer_limit: int = 64 * 1024):
        self.buffer_limit = buffer_limit

    async def launch(
        self,
        spec: LaunchSpec,
        on_stdout: Optional[LineCallback] = None,
        on_stderr: Optional[LineCallback] = None,
    ) -> SupervisedProcess:
        argv = build_argv(spec)
        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        logger.info("Starting R Shiny server: %s (port %d)", spec.executable.path, spec.port)
        logger.debug("R app path: %s", spec.app_path)
        try:
            handle = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=clean_env(),
                **kwargs,
            )
        except OSError as exc:
            raise LaunchError(
                f"Could not start {spec.executable.path}: {exc}"
            ) from exc

        process = SupervisedProcess(
            handle=handle,
            pid=handle.pid,
            stdout=OutputBuffer(self.buffer_limit),
            stderr=OutputBuffer(self.buffer_limit),
        )
        stdout_callbacks = [lambda line: r_logger.info("R: %s", line)]
        stderr_callbacks = [lambda line: r_logger.warning("R Error: %s", line)]
        if on_stdout is not None:
            stdout_callbacks.append(on_stdout)
        if on_stderr is not None:
            stderr_callbacks.append(on_stderr)

        process.pumps = [
            asyncio.ensure_future(_pump(handle.stdout, process.stdout, stdout_callbacks)),
            asyncio.ensure_future(_pump(handle.stderr, process.stderr, stderr_callbacks)),
        ]
        logger.info("R process started (pid %d)", handle.pid)
        return process
