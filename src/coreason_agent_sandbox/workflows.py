# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

"""Reconciliation workflows between the sandbox working tree and the remote branch."""

from coreason_agent_sandbox.commands import ensure_success, run_in_project
from coreason_agent_sandbox.exceptions import CommandError
from coreason_agent_sandbox.models import ResetResult, SyncResult
from coreason_agent_sandbox.runtime import SandboxHandle
from coreason_agent_sandbox.utils.logger import logger
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

DEFAULT_SYNC_MESSAGE = "Sync local changes"
DEFAULT_CHECKPOINT_MESSAGE = "Checkpoint before reset"


async def _git(sandbox: SandboxHandle, args: list[str], failure_message: str) -> str:
    result = ensure_success(await run_in_project(sandbox, "git", args), failure_message)
    return result.stdout


def _failure_detail(error: CommandError) -> str:
    detail = redact_sensitive_info(error.stderr.strip())
    return f"{error}: {detail}" if detail else str(error)


async def sync_changes(sandbox: SandboxHandle, branch_name: str, commit_message: str | None = None) -> SyncResult:
    """Commit everything in the working tree and push it to ``branch_name``.

    Nothing is committed when the tree is clean. A failed push leaves the local commit
    in place; the next sync pushes it.

    Raises:
        SandboxGoneError: If the sandbox stopped running.
    """
    committed = False
    try:
        await _git(sandbox, ["add", "."], "Failed to add changes")

        status = await _git(sandbox, ["status", "--porcelain"], "Failed to check status")
        if not status.strip():
            return SyncResult(success=True, message="No changes to sync")

        await _git(sandbox, ["commit", "-m", commit_message or DEFAULT_SYNC_MESSAGE], "Failed to commit changes")
        committed = True

        await _git(sandbox, ["push", "origin", branch_name], "Failed to push changes")
    except CommandError as e:
        logger.error(f"Sync of branch {branch_name} failed: {_failure_detail(e)}")
        return SyncResult(success=False, committed=committed, error=str(e))

    logger.info(f"Synced local changes to {branch_name}")
    return SyncResult(success=True, committed=True, pushed=True, message="Changes synced successfully")


async def reset_changes(sandbox: SandboxHandle, branch_name: str, commit_message: str | None = None) -> ResetResult:
    """Checkpoint local work, then make the working tree match the remote branch.

    Local changes are committed first so the reset never loses them from the reflog.
    When the branch is not on the remote (or the remote cannot be queried) the tree is
    reset to the local HEAD instead.

    Raises:
        SandboxGoneError: If the sandbox stopped running.
    """
    had_local_changes = False
    try:
        status = await _git(sandbox, ["status", "--porcelain"], "Failed to check status")
        had_local_changes = bool(status.strip())

        if had_local_changes:
            await _git(sandbox, ["add", "."], "Failed to add changes")
            await _git(
                sandbox, ["commit", "-m", commit_message or DEFAULT_CHECKPOINT_MESSAGE], "Failed to commit changes"
            )

        target = "HEAD"
        remote = await run_in_project(sandbox, "git", ["ls-remote", "--heads", "origin", branch_name])
        if not remote.success:
            logger.warning(f"Could not query remote for {branch_name}, resetting to local HEAD")
        elif remote.stdout.strip():
            await _git(sandbox, ["fetch", "origin", branch_name], "Failed to fetch from remote")
            target = "FETCH_HEAD"

        await _git(sandbox, ["reset", "--hard", target], "Failed to reset changes")

        clean = await run_in_project(sandbox, "git", ["clean", "-fd"])
        if not clean.success:
            logger.warning(f"Failed to clean untracked files: {redact_sensitive_info(clean.stderr.strip())}")
    except CommandError as e:
        logger.error(f"Reset of branch {branch_name} failed: {_failure_detail(e)}")
        return ResetResult(success=False, had_local_changes=had_local_changes, error=str(e))

    logger.info(f"Reset working tree to {target} on {branch_name}")
    return ResetResult(
        success=True,
        had_local_changes=had_local_changes,
        message="Changes reset successfully to match remote branch",
    )
