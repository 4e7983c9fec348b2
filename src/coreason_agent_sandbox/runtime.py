# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from coreason_agent_sandbox.models import ProcessOutput

LineCallback = Callable[[str], None]


class ProcessHandle(ABC):
    """A process started inside a sandbox."""

    @abstractmethod
    async def wait(self) -> "ProcessOutput":
        """Block until the process exits.

        Returns:
            ProcessOutput: Exit code and captured output. A non-zero exit is reported
            here, never raised.
        """
        pass  # pragma: no cover


class SandboxHandle(ABC):
    """Capability to run processes and write files in one remote environment.

    Follows the Strategy Pattern: the orchestrator only talks to this interface, each
    sandbox vendor ships an adapter.
    """

    @property
    @abstractmethod
    def sandbox_id(self) -> str:
        """The vendor identifier used to reconnect to this sandbox later."""
        pass  # pragma: no cover

    @abstractmethod
    async def start_process(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | None = None,
        on_stdout: LineCallback | None = None,
        on_stderr: LineCallback | None = None,
    ) -> ProcessHandle:
        """Start a process without waiting for it.

        Args:
            command: The executable.
            args: Arguments passed verbatim (no shell interpretation).
            cwd: Working directory inside the sandbox.
            on_stdout: Called once per stdout line as it arrives.
            on_stderr: Called once per stderr line as it arrives.

        Returns:
            ProcessHandle: Handle to await completion. Output is only delivered to
            the callbacks while the handle is being awaited.

        Raises:
            Exception: Any transport failure from the vendor SDK.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_file(self, path: str, content: str | bytes) -> None:
        """Write a file inside the sandbox."""
        pass  # pragma: no cover

    @abstractmethod
    def get_hostname(self, port: int) -> str:
        """Public hostname routed to ``port`` inside the sandbox."""
        pass  # pragma: no cover

    @abstractmethod
    async def close(self) -> None:
        """Shut the sandbox down."""
        pass  # pragma: no cover


class SandboxTransport(ABC):
    """Creates new sandboxes and reconnects to existing ones."""

    @abstractmethod
    async def create(self, timeout_seconds: int) -> SandboxHandle:
        """Boot a new sandbox that the vendor kills after ``timeout_seconds``."""
        pass  # pragma: no cover

    @abstractmethod
    async def reconnect(self, sandbox_id: str) -> SandboxHandle:
        """Attach to a running sandbox by its persisted identifier."""
        pass  # pragma: no cover
