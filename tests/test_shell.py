"""Tests for the desktop shell glue (no GUI is started)."""

import asyncio
from unittest.mock import MagicMock, patch

from maldiquant_desktop.config import Config
from maldiquant_desktop.models import FailureCategory, FailureReport
from maldiquant_desktop.shell import DesktopShell, error_html, loading_html


def test_error_html_escapes_report():
    report = FailureReport(
        category=FailureCategory.PROCESS_CRASHED,
        title="R Process Crashed",
        diagnostic_text="Error in <script>",
        remediation="Reinstall R",
    )
    page = error_html(report)

    assert "R Process Crashed" in page
    assert "Error in &lt;script&gt;" in page
    assert "<script>" not in page


def test_loading_html_names_app():
    assert "MALDIquant Analyzer" in loading_html("MALDIquant Analyzer")


def test_failure_loads_error_page():
    shell = DesktopShell(Config())
    shell.window = MagicMock()
    report = FailureReport(FailureCategory.RUNTIME_NOT_FOUND, "R Not Found", "none", "install R")

    shell._on_failure(report)

    assert shell.report is report
    shell.window.load_html.assert_called_once()


def test_ready_loads_url():
    shell = DesktopShell(Config())
    shell.window = MagicMock()
    shell._on_ready("http://127.0.0.1:3838/")
    shell.window.load_url.assert_called_once_with("http://127.0.0.1:3838/")


def test_window_closed_before_start_skips_launch():
    shell = DesktopShell(Config())
    shell._on_closed()

    with patch("maldiquant_desktop.shell.LifecycleController") as controller_cls:
        controller = controller_cls.return_value

        async def _noop():
            return None

        controller.shutdown.side_effect = _noop
        asyncio.run(shell._supervise())

    controller.start.assert_not_called()
    controller.shutdown.assert_called_once()
