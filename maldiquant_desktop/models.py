"""Data models for runtime discovery and process supervision."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from maldiquant_desktop.exceptions import InvalidStateTransition


class InvocationMode(str, Enum):
    DIRECT_INTERPRETER = "direct_interpreter"
    SCRIPT_RUNNER = "script_runner"


class ProcessState(str, Enum):
    STARTING = "starting"
    AWAITING_HTTP = "awaiting_http"
    READY = "ready"
    EXITED = "exited"
    FAILED = "failed"


# Forward-only transitions of a supervised process.
_TRANSITIONS = {
    ProcessState.STARTING: {ProcessState.AWAITING_HTTP, ProcessState.FAILED},
    ProcessState.AWAITING_HTTP: {ProcessState.READY, ProcessState.FAILED},
    ProcessState.READY: {ProcessState.EXITED},
    ProcessState.EXITED: set(),
    ProcessState.FAILED: set(),
}

TERMINAL_STATES = frozenset({ProcessState.EXITED, ProcessState.FAILED})


class FailureCategory(str, Enum):
    RUNTIME_NOT_FOUND = "runtime_not_found"
    MISSING_DEPENDENCY = "missing_dependency"
    PROCESS_CRASHED = "process_crashed"
    HTTP_UNREACHABLE = "http_unreachable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExecutableCandidate:
    """A verified R executable and the way it has to be invoked."""

    path: str
    mode: InvocationMode
    source: str = "unknown"


@dataclass(frozen=True)
class LaunchSpec:
    executable: ExecutableCandidate
    port: int
    host: str
    app_path: str
    r_command: str

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"


class OutputBuffer:
    """Text accumulator that keeps only the most recent ``limit`` characters."""

    def __init__(self, limit: int = 64 * 1024):
        self.limit = limit
        self._chunks: list[str] = []
        self._size = 0
        self.truncated = False

    def append(self, text: str) -> None:
        self._chunks.append(text)
        self._size += len(text)
        if self._size > self.limit:
            joined = "".join(self._chunks)[-self.limit:]
            self._chunks = [joined]
            self._size = len(joined)
            self.truncated = True

    def getvalue(self) -> str:
        return "".join(self._chunks)

    def tail(self, chars: int) -> str:
        return self.getvalue()[-chars:]

    def clear(self) -> None:
        self._chunks = []
        self._size = 0

    def __len__(self) -> int:
        return self._size


@dataclass
class SupervisedProcess:
    """A running (or finished) R child process.

    Owned by the lifecycle controller. Once it reaches a terminal state it is
    never reused.
    """

    handle: Any
    pid: int
    stdout: OutputBuffer = field(default_factory=OutputBuffer)
    stderr: OutputBuffer = field(default_factory=OutputBuffer)
    state: ProcessState = ProcessState.STARTING
    exit_code: Optional[int] = None
    # Tasks copying stdout/stderr into the buffers.
    pumps: list = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: ProcessState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Cannot move process {self.pid} from {self.state.value} "
                f"to {new_state.value}"
            )
        self.state = new_state


@dataclass
class ReadinessPoll:
    """Bookkeeping for one HTTP confirmation run."""

    max_attempts: int
    interval: float
    attempt_count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts


@dataclass(frozen=True)
class FailureReport:
    """A classified launch failure, ready to show to the user."""

    category: FailureCategory
    title: str
    diagnostic_text: str
    remediation: str
    package: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def message(self) -> str:
        parts = [self.diagnostic_text.strip(), self.remediation.strip()]
        return "\n\n".join(p for p in parts if p)
