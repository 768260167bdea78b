"""Lifecycle controller: owns the single supervised R process."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from maldiquant_desktop.classifier import classify, runtime_not_found, spawn_failed
from maldiquant_desktop.config import Config
from maldiquant_desktop.exceptions import InvalidStateTransition, LaunchError
from maldiquant_desktop.launcher import ProcessLauncher, build_launch_spec
from maldiquant_desktop.locator import ExecutableLocator
from maldiquant_desktop.models import (
    ExecutableCandidate,
    FailureReport,
    ProcessState,
    SupervisedProcess,
)
from maldiquant_desktop.readiness import Probe, ReadinessDetector, ReadinessStage

logger = logging.getLogger(__name__)

_PUMP_DRAIN_SECONDS = 2.0


class ControllerState(str, Enum):
    IDLE = "idle"
    LOCATING = "locating"
    LAUNCHING = "launching"
    RUNNING = "running"
    READY = "ready"
    FINISHED = "finished"
    TERMINAL_ERROR = "terminal_error"
    STOPPED = "stopped"


class LifecycleController:
    """Start R once, report readiness or failure, and tear it down on shutdown.

    All state changes happen on the event loop that called ``start()``.
    ``on_ready`` and ``on_failure`` are each delivered at most once per
    launch attempt.  A failed server is reported, never restarted.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        locator: Optional[ExecutableLocator] = None,
        launcher: Optional[ProcessLauncher] = None,
        probe: Optional[Probe] = None,
        on_ready: Optional[Callable[[str], None]] = None,
        on_failure: Optional[Callable[[FailureReport], None]] = None,
    ):
        self.config = config or Config.load()
        self.locator = locator or ExecutableLocator.from_config(self.config.locator)
        self.launcher = launcher or ProcessLauncher(self.config.process.buffer_limit_chars)
        self.probe = probe
        self.on_ready = on_ready
        self.on_failure = on_failure

        self.state = ControllerState.IDLE
        self.candidate: Optional[ExecutableCandidate] = None
        self._located = False

        self.process: Optional[SupervisedProcess] = None
        self.detector: Optional[ReadinessDetector] = None
        self.url: Optional[str] = None
        self.report: Optional[FailureReport] = None
        self._ready_sent = False
        self._failure_sent = False
        self._watcher: Optional[asyncio.Task] = None
        self._stopping = False
        self._shutdown_task: Optional[asyncio.Task] = None
        self._launch_task: Optional[asyncio.Task] = None
        self._terminator: Optional[asyncio.Task] = None

    # ── Discovery ────────────────────────────────────────────────────────────

    def locate(self) -> Optional[ExecutableCandidate]:
        """Resolve the R executable; the search runs once per controller."""
        if not self._located:
            self.candidate = self.locator.locate()
            self._located = True
        return self.candidate

    def _executable(self) -> Optional[str]:
        return self.candidate.path if self.candidate is not None else None

    # ── Start ────────────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Locate R and launch the Shiny server.

        Returns False when the attempt failed immediately (R not found or not
        spawnable); the failure has already been reported.
        """
        if self._stopping or self.state is ControllerState.STOPPED:
            raise InvalidStateTransition("Controller has been shut down")
        if self._watcher is not None and not self._watcher.done():
            raise InvalidStateTransition(
                f"R process {self.process.pid} is still {self.process.state.value}"
            )

        self.process = None
        self.detector = None
        self.url = None
        self.report = None
        self._ready_sent = False
        self._failure_sent = False
        self._terminator = None

        self.state = ControllerState.LOCATING
        candidate = self.locate()
        if candidate is None:
            self.state = ControllerState.TERMINAL_ERROR
            self._report_failure(runtime_not_found(self.locator.tried))
            return False

        self.state = ControllerState.LAUNCHING
        spec = build_launch_spec(candidate, self.config)
        detector = ReadinessDetector.from_config(
            spec.url,
            self.config.readiness,
            on_ready=self._handle_ready,
            on_exhausted=self._handle_exhausted,
            probe=self.probe,
            on_marker=self._handle_marker,
        )
        self.detector = detector
        self._launch_task = asyncio.ensure_future(
            self.launcher.launch(
                spec,
                on_stdout=detector.feed,
                on_stderr=detector.feed if self.config.readiness.scan_stderr else None,
            )
        )
        try:
            process = await asyncio.shield(self._launch_task)
        except LaunchError as exc:
            logger.error("Failed to start R process: %s", exc)
            self.detector = None
            if self._stopping:
                return False
            self.state = ControllerState.TERMINAL_ERROR
            self._report_failure(spawn_failed(exc))
            return False
        finally:
            self._launch_task = None

        if self._stopping:
            # shutdown() ran while R was being spawned and now owns the teardown.
            return False

        self.process = process
        self.state = ControllerState.RUNNING
        if detector.stage is ReadinessStage.POLLING:
            # The marker arrived before the launch call returned.
            self._handle_marker()
        self._watcher = asyncio.ensure_future(self._watch_exit(self.process, detector))
        return True

    # ── Event handlers (event loop only) ─────────────────────────────────────

    def _handle_marker(self) -> None:
        process = self.process
        if process is None or process.state is not ProcessState.STARTING:
            return
        process.transition(ProcessState.AWAITING_HTTP)

    def _handle_ready(self, url: str) -> None:
        process = self.process
        if self._stopping or process is None:
            return
        if process.state is not ProcessState.AWAITING_HTTP:
            return
        process.transition(ProcessState.READY)
        self.state = ControllerState.READY
        self.url = url
        if not self._ready_sent:
            self._ready_sent = True
            if self.on_ready is not None:
                self.on_ready(url)

    def _handle_exhausted(self, attempts: int) -> None:
        process = self.process
        if self._stopping or process is None:
            return
        if process.state is not ProcessState.AWAITING_HTTP:
            return
        process.transition(ProcessState.FAILED)
        self.state = ControllerState.TERMINAL_ERROR
        self._report_failure(
            classify(None, process.stderr.getvalue(), attempts, self._executable())
        )
        # Nothing will ever load from this server; do not leave it running.
        self._terminator = asyncio.ensure_future(self._terminate(process))

    async def _watch_exit(
        self, process: SupervisedProcess, detector: ReadinessDetector
    ) -> None:
        code = await process.handle.wait()
        if process.pumps:
            # A grandchild (R.exe front-end → Rterm.exe) may hold the pipes open.
            _, pending = await asyncio.wait(process.pumps, timeout=_PUMP_DRAIN_SECONDS)
            for pump in pending:
                pump.cancel()
        process.exit_code = code
        logger.info("R process exited with code %s", code)

        detector.cancel()

        if process.state is ProcessState.READY:
            process.transition(ProcessState.EXITED)
            self.state = ControllerState.FINISHED
            if code != 0 and not self._stopping:
                self._report_failure(
                    classify(code, process.stderr.getvalue(), executable=self._executable())
                )
        elif not process.is_terminal:
            process.transition(ProcessState.FAILED)
            self.state = ControllerState.TERMINAL_ERROR
            if not self._stopping:
                self._report_failure(
                    classify(code, process.stderr.getvalue(), executable=self._executable())
                )

    def _report_failure(self, report: FailureReport) -> None:
        if self._failure_sent:
            return
        self._failure_sent = True
        self.report = report
        logger.error("%s [%s]: %s", report.title, report.category.value, report.diagnostic_text)
        if self.on_failure is not None:
            self.on_failure(report)

    # ── Waiting / shutdown ───────────────────────────────────────────────────

    async def wait(self) -> Optional[int]:
        """Wait until the current R process has exited; return its exit code."""
        if self._watcher is None:
            return None
        await asyncio.shield(self._watcher)
        if self._terminator is not None:
            await asyncio.shield(self._terminator)
        return self.process.exit_code if self.process is not None else None

    async def _terminate(self, process: SupervisedProcess) -> None:
        handle = process.handle
        if handle.returncode is not None:
            return
        logger.info("Stopping R Shiny server (pid %d)…", process.pid)
        try:
            handle.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(
                handle.wait(), self.config.process.terminate_grace_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("R did not stop within %.1f s — killing it",
                           self.config.process.terminate_grace_seconds)
            try:
                handle.kill()
            except ProcessLookupError:
                return
            await handle.wait()

    @staticmethod
    def _release(process: SupervisedProcess) -> None:
        for pump in process.pumps:
            pump.cancel()
        process.stdout.clear()
        process.stderr.clear()

    async def _shutdown(self) -> None:
        self._stopping = True
        if self.detector is not None:
            self.detector.cancel()

        launch = self._launch_task
        if launch is not None:
            try:
                spawned = await launch
            except LaunchError:
                spawned = None
            if spawned is not None:
                await self._terminate(spawned)
                self._release(spawned)

        process = self.process
        if process is not None:
            await self._terminate(process)
            if self._terminator is not None:
                await self._terminator
            if self._watcher is not None:
                await self._watcher
            self._release(process)

        self.process = None
        self.detector = None
        self._watcher = None
        self._terminator = None
        self.state = ControllerState.STOPPED
        logger.info("Supervisor stopped")

    async def shutdown(self) -> None:
        """Stop polling, kill R and release it.  Safe to call repeatedly."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        await self._shutdown_task
