"""Tests for R command construction and process spawning."""

import asyncio

import pytest

from maldiquant_desktop.config import Config
from maldiquant_desktop.exceptions import LaunchError
from maldiquant_desktop.launcher import (
    ISOLATION_FLAG,
    ProcessLauncher,
    _READ_CHUNK,
    _pump,
    build_argv,
    build_launch_spec,
    build_r_command,
)
from maldiquant_desktop.models import (
    ExecutableCandidate,
    InvocationMode,
    LaunchSpec,
    OutputBuffer,
    ProcessState,
)
from tests.fixtures.fake_r import make_fake_r, posix_only


def make_spec(path="/usr/bin/Rscript", mode=InvocationMode.SCRIPT_RUNNER, command="1"):
    return LaunchSpec(
        executable=ExecutableCandidate(path=path, mode=mode),
        port=3838,
        host="127.0.0.1",
        app_path="/srv/R-app",
        r_command=command,
    )


def test_r_command_checks_packages_before_starting():
    script = build_r_command("/srv/R-app", "127.0.0.1", 3838, ["MALDIquant", "shiny"])

    assert 'c("shiny", "MALDIquant")' in script
    assert "requireNamespace(pkg, quietly = TRUE)" in script
    assert "there is no package called '%s'" in script
    assert script.index("requireNamespace") < script.index("shiny::runApp")


def test_r_command_binds_host_and_port():
    script = build_r_command("/srv/R-app", "127.0.0.1", 4000)

    assert "options(shiny.port = 4000L, shiny.host = '127.0.0.1')" in script
    assert "shiny::runApp('/srv/R-app', launch.browser = FALSE)" in script


def test_r_command_uses_forward_slashes_for_windows_paths():
    script = build_r_command(r"C:\Program Files\MALDIquant\R-app", "127.0.0.1", 3838)
    assert "shiny::runApp('C:/Program Files/MALDIquant/R-app'" in script


def test_r_command_escapes_quotes_in_path():
    script = build_r_command("/home/o'brien/R-app", "127.0.0.1", 3838)
    assert r"'/home/o\'brien/R-app'" in script


def test_direct_interpreter_gets_isolation_flag():
    argv = build_argv(make_spec("/usr/lib/R/bin/R", InvocationMode.DIRECT_INTERPRETER, "x"))
    assert argv == ["/usr/lib/R/bin/R", ISOLATION_FLAG, "-e", "x"]


def test_script_runner_omits_isolation_flag():
    argv = build_argv(make_spec("/usr/bin/Rscript", InvocationMode.SCRIPT_RUNNER, "x"))
    assert argv == ["/usr/bin/Rscript", "-e", "x"]


def test_build_launch_spec_from_config(tmp_path):
    config = Config(app={"app_dir": str(tmp_path / "R-app")}, server={"port": 4123})
    candidate = ExecutableCandidate("/usr/bin/Rscript", InvocationMode.SCRIPT_RUNNER)
    spec = build_launch_spec(candidate, config)

    assert spec.port == 4123
    assert spec.url == "http://127.0.0.1:4123/"
    assert spec.app_path == str((tmp_path / "R-app").resolve())
    assert "MALDIquantForeign" in spec.r_command


def test_pump_splits_lines_across_chunks():
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(b"Loading required package: shiny\r\nListen")
        reader.feed_data(b"ing on http://127.0.0.1:3838\n")
        reader.feed_data("caf\u00e9".encode("utf-8")[:4])
        reader.feed_data("caf\u00e9".encode("utf-8")[4:])
        reader.feed_eof()
        buffer = OutputBuffer()
        lines = []
        await _pump(reader, buffer, [lines.append])
        return buffer, lines

    buffer, lines = asyncio.run(run())
    assert lines == [
        "Loading required package: shiny",
        "Listening on http://127.0.0.1:3838",
        "caf\u00e9",
    ]
    assert buffer.getvalue().endswith("caf\u00e9")


def test_pump_flushes_output_without_newlines():
    data = "." * 10_000

    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(data.encode("ascii"))
        reader.feed_eof()
        buffer = OutputBuffer(limit=1024)
        lines = []
        await _pump(reader, buffer, [lines.append])
        return lines

    lines = asyncio.run(run())
    assert len(lines) > 1
    assert max(len(line) for line in lines) <= _READ_CHUNK + 1024
    assert "".join(lines) == data


def test_spawn_failure_raises_launch_error(tmp_path):
    spec = make_spec(path=str(tmp_path / "no-such-R"))
    with pytest.raises(LaunchError):
        asyncio.run(ProcessLauncher().launch(spec))


@posix_only
def test_launch_captures_both_streams(tmp_path):
    fake = make_fake_r(tmp_path, 'echo "to stdout"\necho "to stderr" >&2\nexit 0')
    spec = make_spec(path=str(fake))

    async def run():
        out, err = [], []
        process = await ProcessLauncher().launch(spec, on_stdout=out.append, on_stderr=err.append)
        code = await process.handle.wait()
        await asyncio.gather(*process.pumps)
        return process, code, out, err

    process, code, out, err = asyncio.run(run())
    assert code == 0
    assert process.state is ProcessState.STARTING
    assert out == ["to stdout"]
    assert err == ["to stderr"]
    assert process.stdout.getvalue() == "to stdout\n"
    assert process.stderr.getvalue() == "to stderr\n"


@posix_only
def test_launch_closes_stdin(tmp_path):
    # `read` fails immediately on /dev/null instead of blocking.
    fake = make_fake_r(tmp_path, 'if read line; then echo "got input"; else echo "no input"; fi')

    async def run():
        out = []
        process = await ProcessLauncher().launch(make_spec(path=str(fake)), on_stdout=out.append)
        await asyncio.wait_for(process.handle.wait(), 5)
        await asyncio.gather(*process.pumps)
        return out

    assert asyncio.run(run()) == ["no input"]
