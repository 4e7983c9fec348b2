# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

from typing import Any

from mcp.server.fastmcp import FastMCP

from coreason_agent_sandbox.config import OrchestratorSettings
from coreason_agent_sandbox.models import AgentType, OperationResult, SandboxConfig, TaskRecord
from coreason_agent_sandbox.runtimes.e2b import E2BTransport
from coreason_agent_sandbox.service import TaskSandboxService
from coreason_agent_sandbox.task_logger import TaskLogger
from coreason_agent_sandbox.tasks import InMemoryTaskStore
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

# Initialize orchestration logic
settings = OrchestratorSettings()
task_store = InMemoryTaskStore()
service = TaskSandboxService(
    task_store,
    E2BTransport(api_key=settings.e2b_api_key, template=settings.sandbox_template),
    settings=settings,
)

# Initialize MCP Server
mcp = FastMCP("coreason-agent-sandbox")


@mcp.tool()  # type: ignore[misc]
async def create_sandbox(
    task_id: str,
    user_id: str,
    repo_url: str,
    selected_agent: str = "claude",
    branch_name: str | None = None,
    timeout: str | None = None,
    install_dependencies: bool = True,
    keep_alive: bool = False,
) -> dict[str, Any]:
    """
    Create a sandbox for a task: clone the repository, install dependencies,
    start the dev server and check out the working branch.
    Returns the sandbox id, preview domain, branch name and the task log.
    """
    task_logger = TaskLogger(task_id)

    async def record_sandbox(sandbox_id: str) -> None:
        # Stored before the build finishes so kill_sandbox can reach a half-built sandbox
        await task_store.add(TaskRecord(id=task_id, user_id=user_id, sandbox_id=sandbox_id))

    try:
        config = SandboxConfig(
            task_id=task_id,
            repo_url=repo_url,
            github_token=settings.github_token,
            selected_agent=AgentType(selected_agent),
            api_keys=settings.api_keys(),
            timeout=timeout,
            install_dependencies=install_dependencies,
            keep_alive=keep_alive,
            pre_determined_branch_name=branch_name,
            on_sandbox_created=record_sandbox,
        )
    except ValueError as e:
        return OperationResult(success=False, status_code=400, error=redact_sensitive_info(str(e))).model_dump()

    result = await service.create_task_sandbox(config, task_logger)
    if result.success:
        await task_store.add(
            TaskRecord(
                id=task_id,
                user_id=user_id,
                sandbox_id=result.data["sandbox_id"],
                branch_name=result.data["branch_name"],
            )
        )

    response = result.model_dump()
    response["logs"] = [entry.model_dump(mode="json") for entry in task_logger.entries]
    return response


@mcp.tool()  # type: ignore[misc]
async def create_folder(task_id: str, user_id: str, foldername: str) -> dict[str, Any]:
    """
    Create a folder (and missing parents) in the task's repository.
    """
    return (await service.create_folder(task_id, user_id, foldername)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def delete_file(task_id: str, user_id: str, filename: str) -> dict[str, Any]:
    """
    Delete a file from the task's repository.
    """
    return (await service.delete_file(task_id, user_id, filename)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def file_operation(
    task_id: str, user_id: str, operation: str, source_file: str, target_path: str | None = None
) -> dict[str, Any]:
    """
    Copy ("copy") or move ("cut") a file into target_path, keeping its name.
    """
    return (await service.file_operation(task_id, user_id, operation, source_file, target_path)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def save_file(task_id: str, user_id: str, filename: str, content: str) -> dict[str, Any]:
    """
    Overwrite a file in the task's repository with the given content.
    """
    return (await service.save_file(task_id, user_id, filename, content)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def sync_changes(task_id: str, user_id: str, commit_message: str | None = None) -> dict[str, Any]:
    """
    Commit all local changes and push them to the task's branch.
    """
    return (await service.sync_changes(task_id, user_id, commit_message)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def reset_changes(task_id: str, user_id: str, commit_message: str | None = None) -> dict[str, Any]:
    """
    Checkpoint local changes, then reset the working tree to the remote branch.
    """
    return (await service.reset_changes(task_id, user_id, commit_message)).model_dump()


@mcp.tool()  # type: ignore[misc]
async def kill_sandbox(task_id: str, user_id: str, force: bool = False) -> dict[str, Any]:
    """
    Stop the task's sandbox. Keep-alive sandboxes need force=True.
    """
    return (await service.kill_sandbox(task_id, user_id, force)).model_dump()


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
