"""Desktop shell: a pywebview window around the supervised Shiny server.

The window opens on a loading page, navigates to the server once it is
confirmed ready, shows an error page built from the failure report
otherwise, and shuts R down when it is closed.  pywebview runs the GUI loop
on the main thread; the supervisor's event loop runs in the worker thread
pywebview starts for us.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from html import escape
from typing import Optional

from maldiquant_desktop.config import Config
from maldiquant_desktop.models import FailureReport
from maldiquant_desktop.supervisor import LifecycleController

logger = logging.getLogger(__name__)

_PAGE_STYLE = """
*{box-sizing:border-box;margin:0;padding:0}
body{background:#0d1117;color:#e6edf3;
     font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',sans-serif;
     display:flex;align-items:center;justify-content:center;
     min-height:100vh;padding:40px}
.card{max-width:620px;width:100%;background:#161b22;
      border:1px solid #21262d;border-radius:16px;padding:44px}
h1{font-size:22px;font-weight:800;color:#f0f6fc;margin-bottom:14px}
.err h1{color:#f85149}
p,pre{font-size:14px;color:#8b949e;line-height:1.65;white-space:pre-wrap}
pre{margin-top:18px;color:#c9d1d9;font-family:monospace;font-size:12px}
"""


def loading_html(title: str) -> str:
    return (
        f"<!DOCTYPE html><html><head><meta charset='utf-8'><style>{_PAGE_STYLE}</style>"
        f"</head><body><div class='card'><h1>Starting {escape(title)}…</h1>"
        "<p>Waiting for the R Shiny server to come up.</p></div></body></html>"
    )


def error_html(report: FailureReport) -> str:
    return (
        f"<!DOCTYPE html><html><head><meta charset='utf-8'><style>{_PAGE_STYLE}</style>"
        f"</head><body><div class='card err'><h1>{escape(report.title)}</h1>"
        f"<p>{escape(report.diagnostic_text)}</p>"
        f"<pre>{escape(report.remediation)}</pre></div></body></html>"
    )


class DesktopShell:
    def __init__(self, config: Config):
        self.config = config
        self.window = None
        self.report: Optional[FailureReport] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop: Optional[asyncio.Event] = None
        self._closed = False
        self._lock = threading.Lock()
        self._finished = threading.Event()

    def _on_ready(self, url: str) -> None:
        logger.info("Loading %s", url)
        self.window.load_url(url)

    def _on_failure(self, report: FailureReport) -> None:
        self.report = report
        self.window.load_html(error_html(report))

    def _on_closed(self) -> None:
        with self._lock:
            self._closed = True
            if self._loop is not None and self._stop is not None:
                self._loop.call_soon_threadsafe(self._stop.set)

    async def _supervise(self) -> None:
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._stop = asyncio.Event()
            if self._closed:
                self._stop.set()

        controller = LifecycleController(
            self.config, on_ready=self._on_ready, on_failure=self._on_failure
        )
        try:
            if not self._stop.is_set():
                await controller.start()
            await self._stop.wait()
        finally:
            await controller.shutdown()

    def _worker(self) -> None:
        try:
            asyncio.run(self._supervise())
        except Exception:
            logger.exception("Supervisor thread crashed")
        finally:
            self._finished.set()

    def run(self) -> int:
        import webview  # noqa: PLC0415  (deferred — GUI only)

        self.window = webview.create_window(
            self.config.window.title,
            html=loading_html(self.config.app.name),
            width=self.config.window.width,
            height=self.config.window.height,
            min_size=(960, 640),
        )
        self.window.events.closed += self._on_closed
        webview.start(self._worker)

        # The GUI loop has ended; make sure R is gone before the process exits.
        self._on_closed()
        self._finished.wait(timeout=self.config.process.terminate_grace_seconds + 10)
        logger.info("Webview closed — exiting")
        return 1 if self.report is not None else 0
