# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import pytest
from pydantic import ValidationError

from coreason_agent_sandbox.models import (
    AgentType,
    CommandResult,
    SandboxConfig,
    SessionResult,
    TaskLogEntry,
)

from .conftest import FakeSandbox


def test_command_result_success_tracks_exit_code() -> None:
    assert CommandResult(success=True, exit_code=0).success
    with pytest.raises(ValidationError):
        CommandResult(success=True, exit_code=1)
    with pytest.raises(ValidationError):
        CommandResult(success=False, exit_code=0)


def test_command_result_without_exit_code_cannot_succeed() -> None:
    assert CommandResult(success=False).exit_code is None
    with pytest.raises(ValidationError):
        CommandResult(success=True)


def test_sandbox_config_defaults() -> None:
    config = SandboxConfig(task_id="t", repo_url="https://github.com/acme/widgets")
    assert config.selected_agent is AgentType.CLAUDE
    assert config.ports == [3000]
    assert config.dev_port == 3000
    assert config.install_dependencies is True
    assert config.keep_alive is False


def test_sandbox_config_requires_task_id() -> None:
    with pytest.raises(ValidationError):
        SandboxConfig(task_id="", repo_url="https://github.com/acme/widgets")


def test_sandbox_config_accepts_callbacks() -> None:
    config = SandboxConfig(
        task_id="t",
        repo_url="https://github.com/acme/widgets",
        ports=[5173, 8080],
        on_cancellation_check=lambda: False,
        on_progress=lambda percent, message: None,
    )
    assert config.dev_port == 5173
    assert config.on_cancellation_check is not None
    assert config.on_cancellation_check() is False


def test_session_result_shapes() -> None:
    sandbox = FakeSandbox()
    ok = SessionResult(success=True, sandbox=sandbox, branch_name="agent/x", domain="3000-sbx.e2b.app")
    assert ok.sandbox is sandbox

    assert SessionResult(success=False, cancelled=True).cancelled
    assert SessionResult(success=False, error="boom").error == "boom"

    with pytest.raises(ValidationError):
        SessionResult(success=True, branch_name="agent/x")
    with pytest.raises(ValidationError):
        SessionResult(success=True, sandbox=sandbox, branch_name="agent/x", cancelled=True)


def test_task_log_entry_timestamp() -> None:
    entry = TaskLogEntry(type="command", message="git status")
    assert entry.timestamp.tzinfo is not None
