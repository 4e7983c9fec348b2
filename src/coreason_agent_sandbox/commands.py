# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

"""Command Runner: executes single commands in a sandbox and normalizes the result.

Transport exceptions never escape this module. They are classified once and folded
into a failed :class:`CommandResult` with no exit code.
"""

import json
import shlex
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from coreason_agent_sandbox.config import PROJECT_DIR
from coreason_agent_sandbox.exceptions import CommandError, ErrorKind, SandboxGoneError, classify_transport_error
from coreason_agent_sandbox.models import CommandResult
from coreason_agent_sandbox.runtime import LineCallback, SandboxHandle
from coreason_agent_sandbox.utils.logger import logger
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

if TYPE_CHECKING:  # pragma: no cover
    from coreason_agent_sandbox.task_logger import TaskLogger

JsonLineCallback = Callable[[Any], None]


def format_command(command: str, args: Sequence[str] = ()) -> str:
    """Join command and args with spaces, as shown in results and logs."""
    return " ".join([command, *args]) if args else command


def _dispatch_failure(command_line: str, error: Exception, fallback: str) -> CommandResult:
    kind = classify_transport_error(error)
    message = str(error) or fallback
    logger.error(
        f"Failed to dispatch '{redact_sensitive_info(command_line)}' ({kind.value}): {redact_sensitive_info(message)}"
    )
    return CommandResult(success=False, stderr=message, command=command_line, error_kind=kind)


async def run_command(
    sandbox: SandboxHandle,
    command: str,
    args: Sequence[str] = (),
    cwd: str = "/",
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        sandbox: The sandbox to run in.
        command: The executable.
        args: Its arguments.
        cwd: Working directory inside the sandbox.

    Returns:
        CommandResult: Never raises for transport failures; those come back with
        ``success=False`` and no exit code.
    """
    command_line = format_command(command, args)
    try:
        process = await sandbox.start_process(command, list(args), cwd=cwd)
        output = await process.wait()
    except Exception as e:
        return _dispatch_failure(command_line, e, "Command execution failed")

    return CommandResult(
        success=output.exit_code == 0,
        exit_code=output.exit_code,
        stdout=output.stdout,
        stderr=output.stderr,
        command=command_line,
    )


async def run_in_project(sandbox: SandboxHandle, command: str, args: Sequence[str] = ()) -> CommandResult:
    """Run a command in the cloned repository."""
    return await run_command(sandbox, command, args, PROJECT_DIR)


async def run_streaming_command(
    sandbox: SandboxHandle,
    command: str,
    args: Sequence[str] = (),
    on_stdout: LineCallback | None = None,
    on_stderr: LineCallback | None = None,
    on_json_line: JsonLineCallback | None = None,
    cwd: str = PROJECT_DIR,
) -> CommandResult:
    """Run a command and deliver its output line by line while it runs.

    Each stdout line is also parsed as JSON. Lines that parse are handed to
    ``on_json_line``; lines that do not are plain text and not an error.

    Returns:
        CommandResult: stdout/stderr are the collected lines joined by newlines.
    """
    stdout_lines: list[str] = []
    stderr_lines: list[str] = []

    def handle_stdout(line: str) -> None:
        stdout_lines.append(line)
        if on_stdout:
            on_stdout(line)
        if on_json_line:
            try:
                data = json.loads(line)
            except ValueError:
                return
            on_json_line(data)

    def handle_stderr(line: str) -> None:
        stderr_lines.append(line)
        if on_stderr:
            on_stderr(line)

    command_line = format_command(command, args)
    try:
        process = await sandbox.start_process(
            command, list(args), cwd=cwd, on_stdout=handle_stdout, on_stderr=handle_stderr
        )
        output = await process.wait()
    except Exception as e:
        return _dispatch_failure(command_line, e, "Failed to run streaming command in sandbox")

    return CommandResult(
        success=output.exit_code == 0,
        exit_code=output.exit_code,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        command=command_line,
    )


def ensure_success(result: CommandResult, failure_message: str) -> CommandResult:
    """Turn a failed result into a typed error.

    The redacted stderr is logged before raising.

    Raises:
        SandboxGoneError: If the command could not be dispatched because the sandbox is gone.
        CommandError: For any other failure.
    """
    if result.success:
        return result
    if result.exit_code is None and result.error_kind is ErrorKind.GONE:
        raise SandboxGoneError()
    logger.error(f"{failure_message}: {redact_sensitive_info(result.stderr.strip())}")
    raise CommandError(failure_message, result)


async def run_and_log_command(
    sandbox: SandboxHandle,
    command: str,
    args: Sequence[str],
    task_logger: "TaskLogger",
    cwd: str = "/",
    failure_is_error: bool = True,
) -> CommandResult:
    """Run a command and mirror its redacted command line and output to the task log.

    Args:
        sandbox: The sandbox to run in.
        command: The executable.
        args: Its arguments, shell-quoted for display.
        task_logger: Destination for the user-visible log.
        cwd: Working directory inside the sandbox.
        failure_is_error: Log stderr of a failed run as an error. Probes whose failure
            is an expected answer pass False and get it logged as info.
    """
    display = shlex.join([command, *args])
    await task_logger.command(redact_sensitive_info(display))

    result = await run_command(sandbox, command, args, cwd)

    if result.stdout.strip():
        await task_logger.info(redact_sensitive_info(result.stdout.strip()))

    if not result.success and result.stderr.strip():
        redacted_error = redact_sensitive_info(result.stderr.strip())
        if failure_is_error:
            await task_logger.error(redacted_error)
        else:
            await task_logger.info(redacted_error)

    return result
