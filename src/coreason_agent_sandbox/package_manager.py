# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

from coreason_agent_sandbox.commands import format_command, run_in_project
from coreason_agent_sandbox.models import CommandResult, PackageManager
from coreason_agent_sandbox.runtime import SandboxHandle
from coreason_agent_sandbox.task_logger import TaskLogger
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

# First match wins
LOCKFILES: tuple[tuple[str, PackageManager], ...] = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
)

INSTALL_ARGS: dict[PackageManager, list[str]] = {
    "npm": ["install", "--no-audit", "--no-fund"],
    "pnpm": ["install"],
    "yarn": ["install"],
}


async def detect_package_manager(sandbox: SandboxHandle, task_logger: TaskLogger | None = None) -> PackageManager:
    """Pick the package manager from the lock file committed to the repository.

    Returns:
        PackageManager: ``npm`` when no known lock file exists.
    """
    for lockfile, manager in LOCKFILES:
        result = await run_in_project(sandbox, "test", ["-f", lockfile])
        if result.success:
            if task_logger:
                await task_logger.info(f"Detected {manager} ({lockfile})")
            return manager

    if task_logger:
        await task_logger.info("No lock file found, defaulting to npm")
    return "npm"


async def install_dependencies(
    sandbox: SandboxHandle, manager: PackageManager, task_logger: TaskLogger | None = None
) -> CommandResult:
    """Install Node.js dependencies with ``manager`` in the project directory."""
    args = INSTALL_ARGS[manager]
    if task_logger:
        await task_logger.info(f"Installing dependencies with {manager}...")
        await task_logger.command(format_command(manager, args))

    result = await run_in_project(sandbox, manager, args)

    if task_logger:
        if result.success:
            await task_logger.info(f"Dependencies installed with {manager}")
        else:
            await task_logger.error(f"{manager} install failed")
            if result.stderr.strip():
                await task_logger.error(redact_sensitive_info(result.stderr.strip()))
    return result
