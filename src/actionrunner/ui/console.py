"""Console output formatting utilities for actionrunner."""

from __future__ import annotations

import sys
import threading
from typing import List, Optional

_STATUS_DISPLAY = {
    "succeeded": "SUCCESS",
    "failed": "FAILED",
    "skipped": "SKIPPED",
    "cancelled": "CANCELLED",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                   and the captured (redacted) output of failed steps
            quiet: If True, only errors and the final results are printed
        """
        self.debug = debug
        self.quiet = quiet
        # jobs run on worker threads; keep their lines from interleaving
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def _progress(self, *lines: str) -> None:
        if not self.quiet:
            self._out(*lines)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._progress(
            "\nRUN STARTED",
            f"Repository: {repository}",
            f"Workflow: {workflow}",
            f"Jobs: {job_count}",
            "",
        )

    def print_job_start(self, name: str) -> None:
        self._progress(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        self._progress(f"[{job}] STEP: {name}")

    def print_job_finished(self, name: str, state: str, duration: Optional[float] = None) -> None:
        took = f" ({duration:.1f}s)" if duration is not None else ""
        self._progress(f"JOB {_STATUS_DISPLAY.get(state, state.upper())}: {name}{took}")

    def print_failure(self, name: str, reason: str, exit_code: Optional[int] = None) -> None:
        """
        Print a failed step. `reason` must already be redacted.

        Outside debug mode only the first line of the reason is shown.
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._progress(f"JOB SKIPPED: {name} ({reason})")

    def print_job_cancelled(self, name: str, reason: str) -> None:
        self._progress(f"JOB CANCELLED: {name} ({reason})")

    def print_plan_stage(self, index: int, names: List[str]) -> None:
        self._out(f"=== Stage {index}: {names} ===")

    def print_results(self, result) -> None:
        """Print final results summary for a RunResult."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for key, outcome in result.outcomes.items():
            status = _STATUS_DISPLAY.get(outcome.state.value, outcome.state.value.upper())
            lines.append(f"  {key}: {status}")
            if outcome.error and outcome.state.value == "failed":
                lines.append(f"      {outcome.error.splitlines()[0]}")
            if self.debug and outcome.state.value == "failed":
                for step in outcome.steps:
                    if step.status == "failed" and step.output:
                        lines.extend(f"      | {ln}" for ln in step.output.splitlines())
        lines.append(f"\nRUN {result.status.value.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
