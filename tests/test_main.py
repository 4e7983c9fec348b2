# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from coreason_agent_sandbox.config import OrchestratorSettings
from coreason_agent_sandbox.main import (
    create_folder,
    create_sandbox,
    delete_file,
    file_operation,
    kill_sandbox,
    main,
    reset_changes,
    save_file,
    sync_changes,
)
from coreason_agent_sandbox.models import AgentType, OperationResult
from coreason_agent_sandbox.registry import SandboxRegistry
from coreason_agent_sandbox.service import TaskSandboxService
from coreason_agent_sandbox.tasks import InMemoryTaskStore

from .conftest import FakeSandbox, FakeTransport


@pytest.fixture
def mock_service() -> Generator[MagicMock, None, None]:
    with patch("coreason_agent_sandbox.main.service", new_callable=MagicMock) as mock:
        for name in (
            "create_task_sandbox",
            "create_folder",
            "delete_file",
            "file_operation",
            "save_file",
            "sync_changes",
            "reset_changes",
            "kill_sandbox",
        ):
            setattr(mock, name, AsyncMock(return_value=OperationResult(success=True, message=name)))
        yield mock


@pytest.fixture
def task_store() -> Generator[InMemoryTaskStore, None, None]:
    store = InMemoryTaskStore()
    with patch("coreason_agent_sandbox.main.task_store", store):
        yield store


@pytest.fixture
def server_settings() -> Generator[OrchestratorSettings, None, None]:
    settings = OrchestratorSettings(
        github_token="ghp_server_token",
        anthropic_api_key="sk-ant-server",
        _env_file=None,  # type: ignore[call-arg]
    )
    with patch("coreason_agent_sandbox.main.settings", settings):
        yield settings


@pytest.mark.asyncio
async def test_create_sandbox_stores_task(
    mock_service: MagicMock, task_store: InMemoryTaskStore, server_settings: OrchestratorSettings
) -> None:
    mock_service.create_task_sandbox.return_value = OperationResult(
        success=True,
        message="Sandbox created successfully",
        data={"sandbox_id": "sbx-1", "domain": "3000-sbx-1.e2b.app", "branch_name": "feature/x"},
    )

    response = await create_sandbox("task-1", "user-1", "https://github.com/acme/widgets", branch_name="feature/x")

    assert response["success"] is True
    assert response["data"]["sandbox_id"] == "sbx-1"
    assert response["logs"] == []

    config = mock_service.create_task_sandbox.await_args.args[0]
    assert config.task_id == "task-1"
    assert config.github_token == "ghp_server_token"
    assert config.api_keys.anthropic == "sk-ant-server"
    assert config.selected_agent is AgentType.CLAUDE
    assert config.pre_determined_branch_name == "feature/x"

    task = await task_store.find_task("task-1", "user-1")
    assert task is not None
    assert task.sandbox_id == "sbx-1"
    assert task.branch_name == "feature/x"


@pytest.mark.asyncio
async def test_create_sandbox_failure_does_not_store_task(
    mock_service: MagicMock, task_store: InMemoryTaskStore, server_settings: OrchestratorSettings
) -> None:
    mock_service.create_task_sandbox.return_value = OperationResult(
        success=False, status_code=500, error="Failed to create sandbox"
    )

    response = await create_sandbox("task-1", "user-1", "https://github.com/acme/widgets")

    assert response["success"] is False
    assert await task_store.find_task("task-1", "user-1") is None


@pytest.mark.asyncio
async def test_create_sandbox_rejects_unknown_agent(
    mock_service: MagicMock, task_store: InMemoryTaskStore, server_settings: OrchestratorSettings
) -> None:
    response = await create_sandbox("task-1", "user-1", "https://github.com/acme/widgets", selected_agent="clippy")

    assert response["success"] is False
    assert response["status_code"] == 400
    mock_service.create_task_sandbox.assert_not_called()


@pytest.mark.asyncio
async def test_tools_delegate_to_service(mock_service: MagicMock) -> None:
    assert (await create_folder("t", "u", "src"))["message"] == "create_folder"
    mock_service.create_folder.assert_awaited_with("t", "u", "src")

    assert (await delete_file("t", "u", "a.txt"))["message"] == "delete_file"
    mock_service.delete_file.assert_awaited_with("t", "u", "a.txt")

    await file_operation("t", "u", "cut", "a.txt", "lib")
    mock_service.file_operation.assert_awaited_with("t", "u", "cut", "a.txt", "lib")

    await save_file("t", "u", "a.txt", "hello")
    mock_service.save_file.assert_awaited_with("t", "u", "a.txt", "hello")

    await sync_changes("t", "u", "msg")
    mock_service.sync_changes.assert_awaited_with("t", "u", "msg")

    await reset_changes("t", "u")
    mock_service.reset_changes.assert_awaited_with("t", "u", None)

    response = await kill_sandbox("t", "u", force=True)
    mock_service.kill_sandbox.assert_awaited_with("t", "u", True)
    assert response == {
        "success": True,
        "status_code": 200,
        "message": "kill_sandbox",
        "error": None,
        "data": {},
    }


def test_main() -> None:
    with patch("coreason_agent_sandbox.main.mcp") as mock_mcp:
        main()
        mock_mcp.run.assert_called_once()


@pytest.mark.asyncio
async def test_kill_reaches_sandbox_after_failed_clone(
    task_store: InMemoryTaskStore, server_settings: OrchestratorSettings
) -> None:
    sandbox = FakeSandbox()
    sandbox.script("git clone", exit_code=128, stderr="fatal: repository not found")
    service_settings = OrchestratorSettings(
        e2b_api_key="e2b_test_key",
        dev_server_start_delay=0,
        _env_file=None,  # type: ignore[call-arg]
    )
    real_service = TaskSandboxService(task_store, FakeTransport(sandbox), SandboxRegistry(), service_settings)

    with patch("coreason_agent_sandbox.main.service", real_service):
        created = await create_sandbox("task-1", "user-1", "https://github.com/acme/widgets")
        killed = await kill_sandbox("task-1", "user-1", force=True)

    assert created["success"] is False
    assert created["error"] == "Failed to clone repository to project directory"
    assert killed["status_code"] == 200
    assert killed["data"] == {"killed": True}
    assert sandbox.closed is True


@pytest.mark.asyncio
async def test_create_sandbox_records_task_before_build_finishes(
    mock_service: MagicMock, task_store: InMemoryTaskStore, server_settings: OrchestratorSettings
) -> None:
    async def create_task_sandbox(config: Any, task_logger: Any) -> OperationResult:
        await config.on_sandbox_created("sbx-9")
        assert await task_store.find_task("task-1", "user-1") is not None
        return OperationResult(success=False, status_code=409, error="Task was cancelled", data={"cancelled": True})

    mock_service.create_task_sandbox.side_effect = create_task_sandbox

    await create_sandbox("task-1", "user-1", "https://github.com/acme/widgets")

    task = await task_store.find_task("task-1", "user-1")
    assert task is not None
    assert task.sandbox_id == "sbx-9"
    assert task.branch_name is None
