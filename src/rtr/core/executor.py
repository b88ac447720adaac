"""Command execution.

Provides:
- Safe command execution with output capture
- Optional stdin feeding (bulk restore)
- Combined stdout/stderr capture for diagnostics
- Dry-run mode support
"""

import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

from rtr.core.context import ExecutionContext
from rtr.core.exceptions import ExecutionError, PrerequisiteError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    @property
    def output(self) -> str:
        """Everything the tool printed, stdout first."""
        return self.stdout + self.stderr


class CommandExecutor:
    """Synchronous external-process execution.

    Every kernel-facing operation goes through ``run``; tests replace the
    executor with a fake that answers from simulated state.
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        input: Optional[str] = None,
        combine_output: bool = False,
        timeout: Optional[int] = None,
        mutating: bool = True,
    ) -> CommandResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            input: Text fed to the command's stdin
            combine_output: Merge stderr into stdout, in emission order
            timeout: Command timeout in seconds (config default if None)
            mutating: False for read-only listings, which still run in dry-run

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True, or times out
            PrerequisiteError: If the executable is not installed
        """
        if description:
            self.ctx.console.step(description)

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and mutating:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        if timeout is None:
            timeout = self.ctx.config.command_timeout

        try:
            result = subprocess.run(
                command,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if combine_output else subprocess.PIPE,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
                hint="Kernel state is now unknown; list again before further changes",
            )
        except FileNotFoundError:
            raise PrerequisiteError(
                f"Command not found: {command[0]}",
                hint=f"Install the package that provides {command[0]}",
            )

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

        if check and not cmd_result.success:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=cmd_result.return_code,
                output=cmd_result.output,
            )

        return cmd_result
