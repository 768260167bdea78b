"""Readiness detection for the Shiny server.

Two stages:

  A. Log scrape - wait for the readiness marker (``Listening on``) in R's
     output.  Shiny prints it slightly before it can serve requests, so it
     only arms stage B.
  B. HTTP confirmation - GET ``http://host:port/`` once per interval until
     any HTTP response arrives or the attempt budget is spent.

Both stages fire at most once.  ``cancel()`` stops a pending poll; a probe
that completes after cancellation is ignored.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

import aiohttp

from maldiquant_desktop.config import ReadinessConfig
from maldiquant_desktop.models import ReadinessPoll

logger = logging.getLogger(__name__)

Probe = Callable[[str], Awaitable[bool]]


class ReadinessStage(str, Enum):
    WAITING_FOR_MARKER = "waiting_for_marker"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class HttpProbe:
    """Return True as soon as the server answers with any HTTP status."""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    async def __call__(self, url: str) -> bool:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    logger.debug("Probe %s → HTTP %d", url, resp.status)
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.debug("Probe %s failed: %s", url, exc)
            return False


class ReadinessDetector:
    def __init__(
        self,
        url: str,
        on_ready: Callable[[str], None],
        on_exhausted: Callable[[int], None],
        marker: str = "Listening on",
        probe: Optional[Probe] = None,
        poll_interval: float = 1.0,
        max_attempts: int = 30,
        request_timeout: float = 2.0,
        initial_delay: float = 0.0,
        on_marker: Optional[Callable[[], None]] = None,
    ):
        self.url = url
        self.marker = marker
        self.on_ready = on_ready
        self.on_exhausted = on_exhausted
        self.on_marker = on_marker
        self.probe = probe or HttpProbe(request_timeout)
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay

        self.stage = ReadinessStage.WAITING_FOR_MARKER
        self.poll: Optional[ReadinessPoll] = None
        self.attempts_made = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        url: str,
        config: ReadinessConfig,
        on_ready: Callable[[str], None],
        on_exhausted: Callable[[int], None],
        probe: Optional[Probe] = None,
        on_marker: Optional[Callable[[], None]] = None,
    ) -> ReadinessDetector:
        return cls(
            url,
            on_ready=on_ready,
            on_exhausted=on_exhausted,
            marker=config.marker,
            probe=probe,
            poll_interval=config.poll_interval_seconds,
            max_attempts=config.max_attempts,
            request_timeout=config.request_timeout_seconds,
            initial_delay=config.initial_delay_seconds,
            on_marker=on_marker,
        )

    @property
    def done(self) -> bool:
        return self.stage in (
            ReadinessStage.CONFIRMED,
            ReadinessStage.EXHAUSTED,
            ReadinessStage.CANCELLED,
        )

    def feed(self, line: str) -> None:
        """Stage A: scan one line of R output for the readiness marker."""
        if self.stage is not ReadinessStage.WAITING_FOR_MARKER:
            return
        if self.marker not in line:
            return
        logger.info("Shiny reports it is listening — confirming over HTTP")
        self.stage = ReadinessStage.POLLING
        self.poll = ReadinessPoll(max_attempts=self.max_attempts, interval=self.poll_interval)
        if self.on_marker is not None:
            self.on_marker()
        self._task = asyncio.ensure_future(self._poll_loop())

    async def _poll_loop(self) -> None:
        """Stage B: sequential HTTP probes until success or budget exhausted."""
        poll = self.poll
        if self.initial_delay:
            await asyncio.sleep(self.initial_delay)

        while not poll.exhausted:
            if self.stage is not ReadinessStage.POLLING:
                return
            poll.attempt_count += 1
            self.attempts_made = poll.attempt_count
            ok = await self.probe(self.url)
            if self.stage is not ReadinessStage.POLLING:
                return
            if ok:
                logger.info("Shiny server is ready at %s (attempt %d)", self.url, poll.attempt_count)
                self.stage = ReadinessStage.CONFIRMED
                self.poll = None
                self.on_ready(self.url)
                return
            logger.debug("Attempt %d/%d: no answer from %s",
                         poll.attempt_count, poll.max_attempts, self.url)
            if not poll.exhausted:
                await asyncio.sleep(poll.interval)

        logger.error("Shiny did not answer after %d attempts", poll.attempt_count)
        self.stage = ReadinessStage.EXHAUSTED
        self.poll = None
        self.on_exhausted(poll.attempt_count)

    def cancel(self) -> None:
        if self.done:
            return
        self.stage = ReadinessStage.CANCELLED
        self.poll = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for a running stage B to finish (no-op if it never started)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
