"""Tests for the click CLI."""

from unittest.mock import patch

from click.testing import CliRunner

from maldiquant_desktop.__main__ import cli
from maldiquant_desktop.models import ExecutableCandidate, InvocationMode

CANDIDATE = ExecutableCandidate("/opt/R/4.3.2/bin/Rscript", InvocationMode.SCRIPT_RUNNER, "program-files")


def run(args, tmp_path):
    return CliRunner().invoke(cli, ["--config", str(tmp_path / "none.yaml")] + args)


def test_locate_prints_candidate(tmp_path):
    with patch("maldiquant_desktop.supervisor.LifecycleController.locate", return_value=CANDIDATE):
        result = run(["locate"], tmp_path)

    assert result.exit_code == 0
    assert "/opt/R/4.3.2/bin/Rscript" in result.output
    assert "script_runner" in result.output


def test_locate_not_found_exits_nonzero(tmp_path):
    with patch("maldiquant_desktop.supervisor.LifecycleController.locate", return_value=None):
        result = run(["locate"], tmp_path)

    assert result.exit_code == 1
    assert "R Not Found" in result.output
    assert "cran.r-project.org" in result.output


def test_command_prints_argv(tmp_path):
    with patch("maldiquant_desktop.supervisor.LifecycleController.locate", return_value=CANDIDATE):
        result = run(["command"], tmp_path)

    assert result.exit_code == 0
    assert result.output.startswith("/opt/R/4.3.2/bin/Rscript -e ")
    assert "--vanilla" not in result.output
    assert "shiny::runApp" in result.output
