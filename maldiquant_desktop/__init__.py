"""MALDIquant Desktop - find R, run the MALDIquant Shiny app, supervise it."""

from maldiquant_desktop.classifier import classify
from maldiquant_desktop.config import Config
from maldiquant_desktop.locator import ExecutableLocator
from maldiquant_desktop.models import (
    ExecutableCandidate,
    FailureCategory,
    FailureReport,
    InvocationMode,
    ProcessState,
)
from maldiquant_desktop.supervisor import LifecycleController

__version__ = "1.0.0"
__all__ = [
    "Config",
    "ExecutableCandidate",
    "ExecutableLocator",
    "FailureCategory",
    "FailureReport",
    "InvocationMode",
    "LifecycleController",
    "ProcessState",
    "classify",
]
