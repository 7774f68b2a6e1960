"""
easyk8s/utils/async_command_runner.py

The single I/O boundary for external processes (tofu, aws, kubectl, ssh).

  - CommandRunner: abstract capability that executes a command and returns a
    CommandResult (stdout, stderr, return code). It never raises on a non-zero
    exit; interpreting the exit status is the caller's business.
  - SubprocessRunner: the real implementation on asyncio subprocesses.
  - run_command: convenience wrapper with retry logic that raises
    CommandError for unexpected return codes. An optional `error_parser`
    callback can turn known stderr patterns into a short message.

Usage example:
    from easyk8s.utils.async_command_runner import run_command, CommandError

    try:
        output = await run_command(["tofu", "output", "-raw", "lb_ipv4"], cwd=work_dir)
    except CommandError as err:
        print(f"Command failed: {err}")
"""

from __future__ import annotations

import os
import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from easyk8s.utils.async_retry import async_retry


class CommandError(Exception):
    """Represents a failure when executing a shell command.

    Attributes:
        message (str): The error message describing the command failure.
        return_code (Optional[int]): The exit code if available.
        stderr (str): Captured standard error, kept even when the message hides it.
    """

    def __init__(
        self, message: str, return_code: Optional[int] = None, stderr: str = ""
    ) -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


class CommandResult(BaseModel):
    """Captured output of one finished process."""

    command: List[str]
    return_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.return_code == 0


class CommandRunner(ABC):
    """Executes external processes. Implementations must not raise on a non-zero exit."""

    @abstractmethod
    async def run(
        self,
        command: List[str],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        input_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run `command` to completion and return its captured output.

        Args:
            command: The command and arguments to execute.
            env: Additional environment variables, merged over os.environ.
            cwd: Working directory for the command.
            input_data: If provided, passed to stdin.
            timeout: Seconds before the process is killed. None waits forever.

        Raises:
            CommandError: Only if the process cannot be started at all, or the
                timeout elapses.
        """


class SubprocessRunner(CommandRunner):
    """CommandRunner backed by asyncio.create_subprocess_exec."""

    async def run(
        self,
        command: List[str],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        input_data: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        proc_env = None
        if env:
            proc_env = os.environ.copy()
            proc_env.update(env)

        stdin = asyncio.subprocess.PIPE if input_data else asyncio.subprocess.DEVNULL

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=proc_env,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"Executable not found: {command[0]}") from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(input=input_data.encode() if input_data else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise CommandError(
                f"Command timed out after {timeout} seconds: {command[0]}"
            ) from exc

        return CommandResult(
            command=list(command),
            return_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_bytes.decode(errors="replace").strip(),
            stderr=stderr_bytes.decode(errors="replace").strip(),
        )


async def run_command(
    command: List[str],
    *,
    runner: Optional[CommandRunner] = None,
    sensitive: bool = True,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    input_data: Optional[str] = None,
    timeout: Optional[float] = None,
    successful_return_codes: Optional[List[int]] = None,
    retries: int = 1,
    retry_delay: float = 1.0,
    error_parser: Optional[Callable[[str], Optional[str]]] = None,
) -> str:
    """Run `command` and return its stdout, raising on an unexpected exit code.

    Failure messages are built in three tiers. A known stderr pattern
    recognised by `error_parser` wins. Otherwise a sensitive call reports only
    the exit code, and a non-sensitive one appends command, stdout and stderr.
    Captured stderr always travels on the CommandError as `.stderr`.

    Args:
        command: Argument vector; never passed through a shell.
        runner: Where to execute. Defaults to a fresh SubprocessRunner.
        sensitive: Keep the command line and output out of the message.
        env: Extra environment variables, merged over os.environ.
        cwd: Working directory.
        input_data: Text written to stdin.
        timeout: Seconds before a single attempt is abandoned.
        successful_return_codes: Exit codes that count as success. Defaults to [0].
        retries: Total attempts. Defaults to 1.
        retry_delay: Seconds between attempts.
        error_parser: Maps stderr to a short message, or None when unrecognised.

    Raises:
        CommandError: When every attempt ends with an unexpected exit code.
    """
    active_runner = runner or SubprocessRunner()
    accepted = successful_return_codes or [0]

    @async_retry(retries=retries, delay=retry_delay, retry_on=(CommandError,))
    async def _inner_run_command() -> str:
        result = await active_runner.run(
            command, env=env, cwd=cwd, input_data=input_data, timeout=timeout
        )
        if result.return_code in accepted:
            return result.stdout

        short_message = error_parser(result.stderr) if error_parser else None
        if short_message is not None:
            raise CommandError(short_message, result.return_code, result.stderr)

        detail = ""
        if not sensitive:
            detail = (
                f"\nCommand: {' '.join(command)}"
                f"\nStdout: {result.stdout}"
                f"\nStderr: {result.stderr}"
            )

        raise CommandError(
            f"Command failed with return code {result.return_code}.{detail}",
            result.return_code,
            result.stderr,
        )

    return await _inner_run_command()
