"""Console output formatting utilities for rulegraph."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only errors and the final summary are printed
        """
        self.debug = debug
        self.quiet = quiet
        # worker threads report job events concurrently
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, workflow: str, job_count: int, cores: Optional[int]) -> None:
        """Print run start information."""
        if self.quiet:
            return
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Jobs: {job_count}",
            f"Cores: {cores if cores is not None else 'unlimited'}",
            "",
        )

    def print_nothing_to_do(self) -> None:
        self._out("Nothing to be done (all requested files are up to date).")

    def print_job_start(self, name: str, reason: str, message: Optional[str] = None) -> None:
        """Print job start message."""
        if self.quiet:
            return
        lines = [f"\nJOB STARTED: {name}", f"Reason: {reason}"]
        if message:
            lines.append(message)
        self._out(*lines)

    def print_shellcmd(self, cmd: str) -> None:
        self._out(f"    {cmd}")

    def print_success(self, name: str, duration: Optional[float] = None) -> None:
        """Print success message."""
        if self.quiet:
            return
        suffix = f" ({duration:.1f}s)" if duration is not None else ""
        self._out(f"JOB FINISHED: {name}{suffix}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"\nJOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines, err=True)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        if self.quiet:
            return
        self._out(f"JOB SKIPPED: {name} ({reason})")

    def print_temp_removed(self, path: str) -> None:
        if self.quiet:
            return
        self._out(f"Removing temporary output {path}")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._out(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        if self.debug:
            self._out(f"  {name} (skipped: {reason})")

    def print_plan_counts(self, counts: Dict[str, int]) -> None:
        """Job counts per rule, like the table at the top of a dry run."""
        if not counts:
            return
        width = max(len(r) for r in counts)
        lines = ["", "Job counts:", f"  {'count':>5}  rule"]
        for rule in sorted(counts):
            lines.append(f"  {counts[rule]:>5}  {rule:<{width}}")
        lines.append(f"  {sum(counts.values()):>5}  total")
        self._out(*lines)

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job, status in results.items():
            lines.append(f"  {job}: {status.upper()}")
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
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
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
