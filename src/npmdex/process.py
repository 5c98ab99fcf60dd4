"""Asynchronous execution of external commands with timeouts."""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .error_handling import CommandFailed, CommandTimeout, log_process_error


@dataclass(frozen=True)
class CommandResult:
    """Captured output of a finished command."""

    command: List[str]
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self) -> str:
        """Best human-readable explanation of what the command printed."""
        return (self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}")


class CommandRunner:
    """Runs commands without a shell, bounded by a timeout."""

    def __init__(self, cwd: Optional[Path] = None, timeout_seconds: float = 300.0):
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    async def run(self, command: List[str], timeout_seconds: Optional[float] = None) -> CommandResult:
        """
        Run a command and capture its output.

        A non-zero exit code is not an error here; callers decide what it means.

        Raises:
            CommandFailed: The executable could not be started
            CommandTimeout: The command did not finish in time
        """
        if not command or not isinstance(command[0], str):
            raise ValueError("Invalid command")

        safe_command = [str(arg) for arg in command]
        timeout = timeout_seconds or self.timeout_seconds

        try:
            process = await asyncio.create_subprocess_exec(
                *safe_command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as e:
            log_process_error(
                "Command could not be started",
                command=safe_command[0],
                exception=e,
            )
            raise CommandFailed(f"Could not run {safe_command[0]}: {e}") from e

        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            log_process_error(
                f"Command timed out after {timeout}s",
                command=" ".join(safe_command[:3]),
            )
            raise CommandTimeout(f"{' '.join(safe_command[:3])} timed out after {timeout}s") from e

        return CommandResult(
            command=safe_command,
            stdout=stdout_data.decode("utf-8", errors="replace") if stdout_data else "",
            stderr=stderr_data.decode("utf-8", errors="replace") if stderr_data else "",
            returncode=process.returncode or 0,
        )
