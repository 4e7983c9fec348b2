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
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from coreason_agent_sandbox.exceptions import ErrorKind
from coreason_agent_sandbox.runtime import SandboxHandle

PackageManager = Literal["npm", "pnpm", "yarn"]

CancellationCheck = Callable[[], bool | Awaitable[bool]]
ProgressCallback = Callable[[int, str], None | Awaitable[None]]
SandboxCreatedCallback = Callable[[str], None | Awaitable[None]]


class AgentType(str, Enum):
    """Coding agents that can be launched inside a sandbox."""

    CLAUDE = "claude"
    CODEX = "codex"
    COPILOT = "copilot"
    CURSOR = "cursor"
    GEMINI = "gemini"
    OPENCODE = "opencode"


class ProcessOutput(BaseModel):
    """Raw outcome of a finished sandbox process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandResult(BaseModel):
    """Normalized result of running one command in a sandbox.

    Attributes:
        success: True when the command ran and exited with status 0.
        exit_code: The exit status, or None when the command could not be dispatched.
        stdout: Captured standard output.
        stderr: Captured standard error, or the dispatch error message.
        command: The command line, command and args joined by spaces.
        error_kind: Classification of the dispatch failure, if any.
    """

    success: bool
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    command: str = ""
    error_kind: ErrorKind | None = None

    @model_validator(mode="after")
    def _check_exit_code(self) -> "CommandResult":
        if self.exit_code is not None and self.success != (self.exit_code == 0):
            raise ValueError("success must be True exactly when exit_code is 0")
        if self.exit_code is None and self.success:
            raise ValueError("a command without an exit code cannot succeed")
        return self


class ApiKeys(BaseModel):
    """Per-request API keys for the coding agents."""

    model_config = ConfigDict(frozen=True)

    anthropic: str | None = None
    openai: str | None = None
    cursor: str | None = None
    gemini: str | None = None
    ai_gateway: str | None = None


class SandboxConfig(BaseModel):
    """Input to session creation. Built once per task creation request."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task_id: str = Field(..., min_length=1)
    repo_url: str = Field(..., min_length=1)
    github_token: str | None = None
    selected_agent: AgentType = AgentType.CLAUDE
    api_keys: ApiKeys = Field(default_factory=ApiKeys)
    timeout: str | None = None
    ports: list[int] = Field(default_factory=lambda: [3000])
    install_dependencies: bool = True
    keep_alive: bool = False
    pre_determined_branch_name: str | None = None
    git_author_name: str | None = None
    git_author_email: str | None = None
    on_cancellation_check: CancellationCheck | None = None
    on_progress: ProgressCallback | None = None
    on_sandbox_created: SandboxCreatedCallback | None = None

    @property
    def dev_port(self) -> int:
        return self.ports[0] if self.ports else 3000


class SessionResult(BaseModel):
    """Outcome of session creation.

    Exactly one of two shapes holds: ``success=True`` with ``sandbox`` and
    ``branch_name`` set, or ``success=False`` with either ``cancelled=True`` or an
    ``error`` message.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    sandbox: SandboxHandle | None = None
    domain: str | None = None
    branch_name: str | None = None
    cancelled: bool = False
    error: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "SessionResult":
        if self.success and (self.sandbox is None or not self.branch_name):
            raise ValueError("a successful session requires a sandbox and a branch name")
        if self.success and self.cancelled:
            raise ValueError("a cancelled session cannot be successful")
        return self


class SyncResult(BaseModel):
    """Outcome of committing and pushing local work."""

    success: bool
    committed: bool = False
    pushed: bool = False
    message: str | None = None
    error: str | None = None


class ResetResult(BaseModel):
    """Outcome of checkpointing local work and snapping to the remote branch."""

    success: bool
    had_local_changes: bool = False
    message: str | None = None
    error: str | None = None


class OperationResult(BaseModel):
    """Response envelope handed to the request layer."""

    success: bool
    status_code: int = 200
    message: str | None = None
    error: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class TaskRecord(BaseModel):
    """The fields of a persisted task consumed by the orchestrator."""

    id: str
    user_id: str
    sandbox_id: str | None = None
    branch_name: str | None = None
    deleted_at: datetime | None = None


TaskLogType = Literal["info", "command", "error", "success"]


class TaskLogEntry(BaseModel):
    """One line of a task's user-visible log."""

    type: TaskLogType
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
