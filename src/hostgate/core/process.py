"""Async external command execution with timeouts."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from time import monotonic

import structlog

from hostgate.observability.metrics import COMMAND_DURATION, COMMAND_RESULTS

logger = structlog.get_logger()


@dataclass
class CommandResult:
    """Outcome of one external command."""

    argv: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and self.error is None

    @property
    def output(self) -> str:
        """stdout and stderr together, as tools often split messages across both."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def describe_failure(self) -> str:
        if self.timed_out:
            return f"{self.argv[0]} timed out after {self.duration:.0f}s"
        if self.error:
            return self.error
        detail = (self.stderr or self.stdout).strip()
        return detail or f"{self.argv[0]} exited with status {self.returncode}"


async def run_command(argv: list[str], timeout: float, tool: str | None = None) -> CommandResult:
    """Run a command without a shell and capture its output.

    The process is killed when the timeout expires. No exception is raised for
    a non-zero exit, a timeout or a missing binary; inspect the result instead.

    Args:
        argv: Program and arguments.
        timeout: Seconds to wait before killing the process.
        tool: Label used for metrics; defaults to the program name.

    Returns:
        CommandResult with captured output.
    """
    label = tool or argv[0].rsplit("/", 1)[-1]
    start = monotonic()
    logger.info("Running command", argv=argv, timeout=timeout)

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Command could not be started", argv=argv, error=str(e))
        COMMAND_RESULTS.labels(tool=label, outcome="error").inc()
        return CommandResult(argv=argv, returncode=None, error=f"Failed to start {argv[0]}: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        duration = monotonic() - start
        COMMAND_DURATION.labels(tool=label).observe(duration)
        COMMAND_RESULTS.labels(tool=label, outcome="timeout").inc()
        logger.error("Command timed out", argv=argv, timeout=timeout)
        return CommandResult(
            argv=argv,
            returncode=proc.returncode,
            duration=duration,
            timed_out=True,
        )

    duration = monotonic() - start
    result = CommandResult(
        argv=argv,
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        duration=duration,
    )
    COMMAND_DURATION.labels(tool=label).observe(duration)
    COMMAND_RESULTS.labels(tool=label, outcome="ok" if result.ok else "failed").inc()
    logger.info(
        "Command finished",
        argv=argv,
        returncode=result.returncode,
        duration=round(duration, 3),
    )
    logger.debug("Command output", argv=argv, stdout=result.stdout, stderr=result.stderr)
    return result
