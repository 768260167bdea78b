"""Failure classification: turn exit codes and R's stderr into user-facing reports."""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Optional, Sequence

from maldiquant_desktop.models import FailureCategory, FailureReport

R_DOWNLOAD_URL = "https://cran.r-project.org/"

# R uses typographic quotes in UTF-8 locales.
MISSING_PACKAGE_PATTERN = re.compile(
    r"there is no package called [‘'\"]([A-Za-z0-9._]+)[’'\"]"
)

# STATUS_ACCESS_VIOLATION on Windows.
ACCESS_VIOLATION = 0xC0000005

STDERR_TAIL_CHARS = 500


def is_access_violation(exit_code: Optional[int]) -> bool:
    """True for 0xC0000005 whether reported signed (-1073741819) or unsigned."""
    if exit_code is None:
        return False
    return (exit_code & 0xFFFFFFFF) == ACCESS_VIOLATION


def missing_package(stderr: str) -> Optional[str]:
    match = MISSING_PACKAGE_PATTERN.search(stderr or "")
    return match.group(1) if match else None


def _tail(stderr: str, chars: int = STDERR_TAIL_CHARS) -> str:
    return (stderr or "").strip()[-chars:]


def _classify(
    exit_code: Optional[int],
    stderr: str,
    attempts: Optional[int] = None,
) -> FailureReport:
    """Pick the report for a launch attempt that ended without the server becoming ready.

    ``exit_code`` is None when R is still running but never answered HTTP.
    ``attempts`` is the number of HTTP probes made, when polling ran at all.
    """
    package = missing_package(stderr)
    if package:
        return FailureReport(
            category=FailureCategory.MISSING_DEPENDENCY,
            title="Missing R Package",
            diagnostic_text=(
                f"R started, but the required package '{package}' is not installed."
            ),
            remediation=(
                "Install it from an R console and restart the application:\n"
                f'    install.packages("{package}")'
            ),
            package=package,
            exit_code=exit_code,
        )

    if is_access_violation(exit_code):
        return FailureReport(
            category=FailureCategory.PROCESS_CRASHED,
            title="R Process Crashed",
            diagnostic_text=(
                f"R terminated abnormally (access violation, exit code "
                f"0x{exit_code & 0xFFFFFFFF:08X}) while starting the Shiny server."
            ),
            remediation=(
                "This usually means the R installation is incomplete or was built "
                "for a different architecture. Reinstall R from "
                f"{R_DOWNLOAD_URL} and try again."
            ),
            exit_code=exit_code,
        )

    if exit_code is not None and exit_code != 0:
        tail = _tail(stderr)
        detail = f"\n\nLast R output:\n{tail}" if tail else ""
        return FailureReport(
            category=FailureCategory.PROCESS_CRASHED,
            title="R Process Crashed",
            diagnostic_text=(
                f"The R Shiny server stopped unexpectedly (exit code {exit_code}).{detail}"
            ),
            remediation=(
                "Check the R output above. If the problem persists, reinstall the "
                "required R packages or R itself."
            ),
            exit_code=exit_code,
        )

    if exit_code is None:
        tried = f" after {attempts} attempt(s)" if attempts else ""
        what = f"R is running, but the Shiny server did not answer HTTP requests{tried}."
    else:
        what = "R exited before the Shiny server started answering HTTP requests."
    return FailureReport(
        category=FailureCategory.HTTP_UNREACHABLE,
        title="Server Not Reachable",
        diagnostic_text=what,
        remediation=(
            "Another program may be using the configured port, or a firewall may "
            "block local connections. Free the port or change server.port in "
            "config.yaml and restart."
        ),
        exit_code=exit_code,
    )


def classify(
    exit_code: Optional[int],
    stderr: str,
    attempts: Optional[int] = None,
    executable: Optional[str] = None,
) -> FailureReport:
    """Classify a launch attempt that ended without the server becoming ready.

    ``executable`` is the R binary that was launched; when given it is named
    in the diagnostic text so the user knows which installation failed.
    """
    report = _classify(exit_code, stderr, attempts)
    if executable:
        report = replace(
            report,
            diagnostic_text=f"{report.diagnostic_text}\n\nR executable: {executable}",
        )
    return report


def runtime_not_found(tried: Sequence[str] = ()) -> FailureReport:
    listing = ""
    if tried:
        listing = "\n\nChecked:\n" + "\n".join(f"  - {path}" for path in tried)
    return FailureReport(
        category=FailureCategory.RUNTIME_NOT_FOUND,
        title="R Not Found",
        diagnostic_text=(
            "R is not installed or could not be started from any known location "
            f"(bundled copy, program directories, registry, PATH).{listing}"
        ),
        remediation=f"Install R from {R_DOWNLOAD_URL} and try again.",
    )


def spawn_failed(error: BaseException) -> FailureReport:
    return FailureReport(
        category=FailureCategory.UNKNOWN,
        title="Failed to Start",
        diagnostic_text=f"Could not start R Shiny server: {error}",
        remediation=(
            "Make sure the R installation is accessible and not blocked by "
            f"permissions, or reinstall R from {R_DOWNLOAD_URL}."
        ),
    )
