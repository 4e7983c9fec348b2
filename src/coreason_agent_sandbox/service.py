# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

from collections.abc import Awaitable, Callable

from coreason_agent_sandbox import mutators, workflows
from coreason_agent_sandbox.builder import SessionBuilder
from coreason_agent_sandbox.config import OrchestratorSettings
from coreason_agent_sandbox.exceptions import (
    CommandError,
    ErrorKind,
    RequestError,
    SandboxGoneError,
    TransportError,
    classify_transport_error,
)
from coreason_agent_sandbox.models import OperationResult, SandboxConfig, TaskRecord
from coreason_agent_sandbox.registry import SandboxRegistry, get_registry
from coreason_agent_sandbox.runtime import SandboxHandle, SandboxTransport
from coreason_agent_sandbox.task_logger import TaskLogger
from coreason_agent_sandbox.tasks import TaskStore
from coreason_agent_sandbox.utils.logger import logger
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

SANDBOX_NOT_RUNNING = "Sandbox is not running"

Operation = Callable[[], Awaitable[OperationResult]]


class TaskSandboxService:
    """
    Request-facing operations on a task's sandbox.
    Every operation checks ownership, resolves the sandbox (registry first, then
    reconnect by the persisted id) and answers with an OperationResult envelope.
    Raw exception text is logged, never returned.
    """

    def __init__(
        self,
        task_store: TaskStore,
        transport: SandboxTransport,
        registry: SandboxRegistry | None = None,
        settings: OrchestratorSettings | None = None,
    ):
        self.task_store = task_store
        self.transport = transport
        self.registry = registry if registry is not None else get_registry()
        self.settings = settings or OrchestratorSettings()
        self.builder = SessionBuilder(transport, self.registry, self.settings)

    async def _load_task(self, task_id: str, user_id: str) -> TaskRecord:
        task = await self.task_store.find_task(task_id, user_id)
        if task is None:
            raise RequestError("Task not found", status_code=404)
        if not task.sandbox_id:
            raise RequestError("Sandbox not available")
        return task

    async def resolve_sandbox(self, task: TaskRecord) -> SandboxHandle:
        """
        Return the live handle for the task's sandbox.
        A reconnected handle is registered so later calls reuse it.
        """
        sandbox = self.registry.get(task.id)
        if sandbox is not None:
            return sandbox
        if not task.sandbox_id:
            raise RequestError("Sandbox not available")

        try:
            sandbox = await self.transport.reconnect(task.sandbox_id)
        except Exception as e:
            kind = classify_transport_error(e)
            logger.error(f"Failed to reconnect to sandbox {task.sandbox_id} ({kind.value}): {e}")
            if kind is ErrorKind.GONE:
                raise SandboxGoneError() from e
            raise TransportError("Failed to connect to sandbox", kind) from e

        self.registry.register(task.id, sandbox, keep_alive=False)
        return sandbox

    async def _execute(self, task_id: str, generic_error: str, operation: Operation) -> OperationResult:
        try:
            return await operation()
        except RequestError as e:
            return OperationResult(success=False, status_code=e.status_code, error=str(e))
        except TransportError as e:
            if e.kind is ErrorKind.GONE:
                logger.warning(f"Sandbox for task {task_id} is no longer running")
                self.registry.remove(task_id)
                return OperationResult(success=False, status_code=410, error=SANDBOX_NOT_RUNNING)
            logger.error(f"{generic_error} for task {task_id}: {e}")
            return OperationResult(success=False, status_code=500, error=generic_error)
        except CommandError as e:
            return OperationResult(success=False, status_code=500, error=str(e))
        except Exception as e:
            logger.error(f"{generic_error} for task {task_id}: {type(e).__name__}: {redact_sensitive_info(str(e))}")
            return OperationResult(success=False, status_code=500, error=generic_error)

    async def create_folder(self, task_id: str, user_id: str, foldername: str) -> OperationResult:
        async def operation() -> OperationResult:
            if not foldername:
                raise RequestError("Foldername is required")
            sandbox = await self.resolve_sandbox(await self._load_task(task_id, user_id))
            await mutators.create_folder(sandbox, foldername)
            return OperationResult(success=True, message="Folder created successfully", data={"path": foldername})

        return await self._execute(task_id, "An error occurred while creating the folder", operation)

    async def delete_file(self, task_id: str, user_id: str, filename: str) -> OperationResult:
        async def operation() -> OperationResult:
            if not filename:
                raise RequestError("Filename is required")
            sandbox = await self.resolve_sandbox(await self._load_task(task_id, user_id))
            await mutators.delete_file(sandbox, filename)
            return OperationResult(success=True, message="File deleted successfully", data={"path": filename})

        return await self._execute(task_id, "An error occurred while deleting the file", operation)

    async def file_operation(
        self, task_id: str, user_id: str, operation: str, source_file: str, target_path: str | None = None
    ) -> OperationResult:
        """Copy or move a file within the project. ``operation`` is ``copy`` or ``cut``."""

        async def run() -> OperationResult:
            if not operation or not source_file:
                raise RequestError("Missing required parameters")
            if operation not in ("copy", "cut"):
                raise RequestError("Invalid operation")
            sandbox = await self.resolve_sandbox(await self._load_task(task_id, user_id))
            target = await mutators.copy_or_move(sandbox, operation, source_file, target_path)
            message = "File copied successfully" if operation == "copy" else "File moved successfully"
            return OperationResult(success=True, message=message, data={"path": target})

        return await self._execute(task_id, "Failed to perform file operation", run)

    async def save_file(self, task_id: str, user_id: str, filename: str, content: str | None) -> OperationResult:
        async def operation() -> OperationResult:
            if not filename or content is None:
                raise RequestError("Missing filename or content")
            sandbox = await self.resolve_sandbox(await self._load_task(task_id, user_id))
            await mutators.save_file(sandbox, filename, content)
            return OperationResult(success=True, message="File saved successfully", data={"path": filename})

        return await self._execute(task_id, "Failed to write file to sandbox", operation)

    async def _load_task_with_branch(self, task_id: str, user_id: str) -> tuple[TaskRecord, str]:
        task = await self._load_task(task_id, user_id)
        if not task.branch_name:
            raise RequestError("Branch not available")
        return task, task.branch_name

    async def sync_changes(self, task_id: str, user_id: str, commit_message: str | None = None) -> OperationResult:
        """Commit and push everything in the task's working tree."""

        async def operation() -> OperationResult:
            task, branch_name = await self._load_task_with_branch(task_id, user_id)
            sandbox = await self.resolve_sandbox(task)
            result = await workflows.sync_changes(sandbox, branch_name, commit_message)
            data = {"committed": result.committed, "pushed": result.pushed}
            if not result.success:
                return OperationResult(success=False, status_code=500, error=result.error, data=data)
            return OperationResult(success=True, message=result.message, data=data)

        return await self._execute(task_id, "An error occurred while syncing changes", operation)

    async def reset_changes(self, task_id: str, user_id: str, commit_message: str | None = None) -> OperationResult:
        """Checkpoint local work and make the working tree match the remote branch."""

        async def operation() -> OperationResult:
            task, branch_name = await self._load_task_with_branch(task_id, user_id)
            sandbox = await self.resolve_sandbox(task)
            result = await workflows.reset_changes(sandbox, branch_name, commit_message)
            data = {"had_local_changes": result.had_local_changes}
            if not result.success:
                return OperationResult(success=False, status_code=500, error=result.error, data=data)
            return OperationResult(success=True, message=result.message, data=data)

        return await self._execute(task_id, "An error occurred while resetting changes", operation)

    async def kill_sandbox(self, task_id: str, user_id: str, force: bool = False) -> OperationResult:
        """
        Stop the task's sandbox.
        A keep-alive sandbox is left running unless ``force`` is set. A sandbox that
        has already stopped counts as killed.
        """

        async def operation() -> OperationResult:
            task = await self._load_task(task_id, user_id)
            if self.registry.should_keep_alive(task_id) and not force:
                return OperationResult(success=True, message="Sandbox kept alive", data={"killed": False})

            try:
                sandbox = await self.resolve_sandbox(task)
            except SandboxGoneError:
                self.registry.remove(task_id)
                return OperationResult(success=True, message="Sandbox already stopped", data={"killed": False})

            await self._close(task_id, sandbox)
            return OperationResult(success=True, message="Sandbox stopped successfully", data={"killed": True})

        return await self._execute(task_id, "Failed to stop sandbox", operation)

    async def _close(self, task_id: str, sandbox: SandboxHandle) -> None:
        if self.registry.get(task_id) is sandbox:
            self.registry.remove(task_id)
        try:
            await sandbox.close()
        except Exception as e:
            if classify_transport_error(e) is not ErrorKind.GONE:
                raise
            logger.info(f"Sandbox {sandbox.sandbox_id} for task {task_id} was already stopped")

    async def release_sandbox(self, task_id: str) -> bool:
        """
        Called when a task's agent run finishes.
        Closes the sandbox unless it is registered as keep-alive.

        Returns:
            bool: True if a sandbox was closed.
        """
        sandbox = self.registry.get(task_id)
        if sandbox is None or self.registry.should_keep_alive(task_id):
            return False
        try:
            await self._close(task_id, sandbox)
        except Exception as e:
            logger.error(f"Failed to release sandbox for task {task_id}: {e}")
            return False
        return True

    async def create_task_sandbox(self, config: SandboxConfig, task_logger: TaskLogger) -> OperationResult:
        """Run the Session Builder for a task and wrap its outcome in an envelope."""
        result = await self.builder.create(config, task_logger)
        if result.cancelled:
            return OperationResult(success=False, status_code=409, error="Task was cancelled", data={"cancelled": True})
        if not result.success or result.sandbox is None:
            return OperationResult(success=False, status_code=500, error=result.error or "Failed to create sandbox")
        return OperationResult(
            success=True,
            message="Sandbox created successfully",
            data={
                "sandbox_id": result.sandbox.sandbox_id,
                "domain": result.domain,
                "branch_name": result.branch_name,
            },
        )

    async def shutdown(self) -> None:
        """
        Close every registered sandbox that is not keep-alive.
        """
        task_ids = self.registry.task_ids()
        logger.info(f"Shutting down sandbox service. Releasing {len(task_ids)} sandboxes.")
        for task_id in task_ids:
            await self.release_sandbox(task_id)
