# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import base64
import posixpath
import shlex
from typing import Literal

from coreason_agent_sandbox.commands import ensure_success, run_in_project
from coreason_agent_sandbox.runtime import SandboxHandle

FileOperation = Literal["copy", "cut"]


async def create_folder(sandbox: SandboxHandle, foldername: str) -> None:
    """Create ``foldername`` and any missing parents under the project directory.

    Raises:
        CommandError: If mkdir fails.
    """
    ensure_success(await run_in_project(sandbox, "mkdir", ["-p", foldername]), "Failed to create folder")


async def delete_file(sandbox: SandboxHandle, filename: str) -> None:
    ensure_success(await run_in_project(sandbox, "rm", [filename]), "Failed to delete file")


def _target_for(source_file: str, target_path: str | None) -> str:
    name = posixpath.basename(source_file)
    return f"{target_path}/{name}" if target_path else name


async def copy_or_move(
    sandbox: SandboxHandle, operation: str, source_file: str, target_path: str | None = None
) -> str:
    """Copy (``copy``) or move (``cut``) a file or directory into ``target_path``.

    The entry keeps its base name. Without a target path it lands in the project root.

    Returns:
        str: The target path that was written.

    Raises:
        ValueError: If the operation is neither ``copy`` nor ``cut``.
        CommandError: If cp or mv fails.
    """
    target = _target_for(source_file, target_path)
    if operation == "copy":
        ensure_success(await run_in_project(sandbox, "cp", ["-r", source_file, target]), "Failed to copy file")
    elif operation == "cut":
        ensure_success(await run_in_project(sandbox, "mv", [source_file, target]), "Failed to move file")
    else:
        raise ValueError("Invalid operation")
    return target


async def save_file(sandbox: SandboxHandle, filename: str, content: str) -> None:
    """Overwrite ``filename`` with ``content``.

    The content travels base64-encoded and the filename is shell-quoted, so neither
    can break out of the write command.
    """
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    write_command = f"echo '{encoded}' | base64 -d > {shlex.quote(filename)}"
    ensure_success(await run_in_project(sandbox, "sh", ["-c", write_command]), "Failed to write file to sandbox")
