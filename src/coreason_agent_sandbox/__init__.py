# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

"""
coreason-agent-sandbox
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .builder import SessionBuilder
from .config import OrchestratorSettings
from .exceptions import (
    CommandError,
    ConfigError,
    ErrorKind,
    SandboxError,
    SandboxGoneError,
    SandboxTimeoutError,
    TransportError,
)
from .models import CommandResult, OperationResult, ResetResult, SandboxConfig, SessionResult, SyncResult
from .registry import SandboxRegistry, get_registry
from .runtime import SandboxHandle, SandboxTransport
from .service import TaskSandboxService

__all__ = [
    "CommandError",
    "CommandResult",
    "ConfigError",
    "ErrorKind",
    "OperationResult",
    "OrchestratorSettings",
    "ResetResult",
    "SandboxConfig",
    "SandboxError",
    "SandboxGoneError",
    "SandboxHandle",
    "SandboxRegistry",
    "SandboxTimeoutError",
    "SandboxTransport",
    "SessionBuilder",
    "SessionResult",
    "SyncResult",
    "TaskSandboxService",
    "TransportError",
    "get_registry",
]
