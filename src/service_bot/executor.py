"""
Async systemctl / journalctl execution for the service bot.

Runs the host operation behind an approved request with timeout
enforcement and output truncation. Arguments are passed as an argv list,
never through a shell.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from .security import sanitize_output

logger = logging.getLogger("service_bot.executor")

MAX_TIMEOUT = 120


@dataclass
class InvocationResult:
    """Result of running a host command."""

    success: bool
    text: str
    exit_code: int = 0
    timed_out: bool = False


@dataclass
class ProcessOutput:
    """Raw output of a finished (or killed) subprocess."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    error: Optional[str] = None


class ServiceInvoker:
    """
    Executes service actions, status checks and journal reads.

    In dry-run mode (development environment) no subprocess is started:
    actions echo what would have run and every service reports as up.
    """

    def __init__(
        self,
        timeout: int = 30,
        max_output: int = 50000,
        dry_run: bool = False,
    ):
        """
        Initialize the invoker.

        Args:
            timeout: Subprocess timeout in seconds (max 120)
            max_output: Maximum output size in characters
            dry_run: Skip systemctl/journalctl entirely
        """
        self.timeout = min(timeout, MAX_TIMEOUT)
        self.max_output = max_output
        self.dry_run = dry_run

    async def run_action(self, action: str, service: str) -> InvocationResult:
        """
        Run `systemctl <action> <service>`.

        Failures are returned, not raised, so their text can be shown to
        the caller verbatim.
        """
        if self.dry_run:
            return InvocationResult(True, f"action: {action}, service: {service}")

        output = await self._run(["systemctl", action, service])

        if output.error:
            logger.warning(f"systemctl {action} {service} could not run: {output.error}")
            return InvocationResult(False, f"error occurred: `{output.error}`", exit_code=-1)

        if output.timed_out:
            logger.warning(f"systemctl {action} {service} timed out after {self.timeout}s")
            return InvocationResult(
                False,
                f"`systemctl {action} {service}` timed out after {self.timeout}s",
                exit_code=-1,
                timed_out=True,
            )

        if output.exit_code != 0:
            detail = output.stderr.strip() or output.stdout.strip() or "no output"
            logger.warning(f"systemctl {action} {service} exited {output.exit_code}: {detail}")
            return InvocationResult(
                False,
                f"`systemctl {action} {service}` failed (exit code {output.exit_code}): {detail}",
                exit_code=output.exit_code,
            )

        logger.info(f"Ran systemctl {action} {service}")
        return InvocationResult(True, f"Successfully ran `/service {action} {service}`")

    async def is_active(self, service: str) -> bool:
        """True iff `systemctl is-active --quiet <service>` succeeds."""
        if self.dry_run:
            return True

        output = await self._run(["systemctl", "is-active", "--quiet", service])
        return output.error is None and not output.timed_out and output.exit_code == 0

    async def statuses(self, services: List[str]) -> List[tuple[str, bool]]:
        """Check all services concurrently, preserving input order."""
        results = await asyncio.gather(*(self.is_active(service) for service in services))
        return list(zip(services, results))

    async def journal(self, service: str, lines: int = 50) -> InvocationResult:
        """Read the last lines of a service's journal."""
        if self.dry_run:
            return InvocationResult(True, f"journal: {service}, lines: {lines}")

        output = await self._run(
            ["journalctl", "-u", service, "-n", str(lines), "--no-pager", "--output=short-iso"]
        )

        if output.error:
            return InvocationResult(False, f"error occurred: `{output.error}`", exit_code=-1)
        if output.timed_out:
            return InvocationResult(
                False,
                f"journalctl timed out after {self.timeout}s",
                exit_code=-1,
                timed_out=True,
            )
        if output.exit_code != 0:
            detail = output.stderr.strip() or "no output"
            return InvocationResult(
                False,
                f"journalctl failed (exit code {output.exit_code}): {detail}",
                exit_code=output.exit_code,
            )

        return InvocationResult(True, output.stdout or "(no journal entries)")

    async def _run(self, argv: List[str]) -> ProcessOutput:
        """Run argv with the configured timeout; never raises for process errors."""
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ProcessOutput("", "", -1, error=f"{type(e).__name__}: {e}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ProcessOutput("", "", -1, timed_out=True)

        return ProcessOutput(
            stdout=sanitize_output(self._decode_and_truncate(stdout_bytes)),
            stderr=sanitize_output(self._decode_and_truncate(stderr_bytes)),
            exit_code=process.returncode if process.returncode is not None else -1,
        )

    def _decode_and_truncate(self, data: bytes) -> str:
        """Decode bytes and truncate if necessary."""
        text = data.decode("utf-8", errors="replace")
        if len(text) > self.max_output:
            truncated_amount = len(text) - self.max_output
            return text[: self.max_output] + f"\n... [TRUNCATED {truncated_amount} chars]"
        return text
