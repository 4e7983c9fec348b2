# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import asyncio
import os
import shlex
from collections.abc import Sequence
from typing import Any

from e2b import CommandExitException
from e2b_code_interpreter import Sandbox as E2BSandbox

from coreason_agent_sandbox.models import ProcessOutput
from coreason_agent_sandbox.runtime import LineCallback, ProcessHandle, SandboxHandle, SandboxTransport
from coreason_agent_sandbox.utils.logger import logger


class _LineSplitter:
    """Turns arbitrary output chunks into complete lines for a callback."""

    def __init__(self, callback: LineCallback):
        self._callback = callback
        self._pending = ""

    def feed(self, chunk: str) -> None:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._callback(line.rstrip("\r"))

    def flush(self) -> None:
        if self._pending:
            line, self._pending = self._pending, ""
            self._callback(line.rstrip("\r"))


class E2BProcess(ProcessHandle):
    """A background command running in an E2B sandbox."""

    def __init__(
        self,
        handle: Any,
        stdout_splitter: _LineSplitter | None = None,
        stderr_splitter: _LineSplitter | None = None,
    ):
        self._handle = handle
        self._stdout_splitter = stdout_splitter
        self._stderr_splitter = stderr_splitter

    async def wait(self) -> ProcessOutput:
        """Wait for the command and report its exit status.

        Background commands only stream output through the callbacks given to
        ``wait``, so line delivery happens here. E2B raises ``CommandExitException``
        for non-zero exits; it carries the same fields as a normal result and is
        unwrapped here.
        """
        splitters = [s for s in (self._stdout_splitter, self._stderr_splitter) if s is not None]
        try:
            result = await asyncio.to_thread(
                self._handle.wait,
                on_stdout=self._stdout_splitter.feed if self._stdout_splitter else None,
                on_stderr=self._stderr_splitter.feed if self._stderr_splitter else None,
            )
        except CommandExitException as e:
            result = e
        finally:
            for splitter in splitters:
                splitter.flush()

        return ProcessOutput(
            exit_code=result.exit_code,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )


class E2BSandboxHandle(SandboxHandle):
    """SandboxHandle backed by an E2B cloud microVM."""

    def __init__(self, sandbox: E2BSandbox):
        self.sandbox = sandbox

    @property
    def sandbox_id(self) -> str:
        return str(self.sandbox.sandbox_id)

    async def start_process(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: str | None = None,
        on_stdout: LineCallback | None = None,
        on_stderr: LineCallback | None = None,
    ) -> ProcessHandle:
        """Start ``command`` in the background.

        Output callbacks fire while the returned process is awaited. Command-level
        timeouts are disabled (``timeout=0``); the sandbox lifetime set at creation is
        the only deadline.
        """
        handle = await asyncio.to_thread(
            self.sandbox.commands.run,
            shlex.join([command, *args]),
            background=True,
            cwd=cwd,
            timeout=0,
        )
        return E2BProcess(
            handle,
            _LineSplitter(on_stdout) if on_stdout else None,
            _LineSplitter(on_stderr) if on_stderr else None,
        )

    async def write_file(self, path: str, content: str | bytes) -> None:
        await asyncio.to_thread(self.sandbox.files.write, path, content)

    def get_hostname(self, port: int) -> str:
        return str(self.sandbox.get_host(port))

    async def close(self) -> None:
        """Kill the E2B sandbox."""
        logger.info(f"Terminating E2B sandbox: {self.sandbox_id}")
        await asyncio.to_thread(self.sandbox.kill)


class E2BTransport(SandboxTransport):
    """Creates and reconnects E2B sandboxes.

    Uses E2B cloud-based microVMs for isolated repository checkouts.
    """

    def __init__(self, api_key: str | None = None, template: str = "base"):
        """Initializes the E2BTransport.

        Args:
            api_key: E2B API Key. Defaults to E2B_API_KEY env var.
            template: E2B template ID to use (default: 'base').
        """
        self.api_key = api_key or os.getenv("E2B_API_KEY")
        self.template = template

    async def create(self, timeout_seconds: int) -> SandboxHandle:
        """Boot a new E2B sandbox.

        Raises:
            Exception: If the sandbox fails to start.
        """
        logger.info(f"Starting E2B sandbox (template: {self.template}, timeout: {timeout_seconds}s)")
        try:
            sandbox = await asyncio.to_thread(
                E2BSandbox.create,
                template=self.template,
                timeout=timeout_seconds,
                api_key=self.api_key,
            )
        except Exception as e:
            logger.error(f"Failed to start E2B sandbox: {e}")
            raise
        logger.info(f"E2B sandbox started: {sandbox.sandbox_id}")
        return E2BSandboxHandle(sandbox)

    async def reconnect(self, sandbox_id: str) -> SandboxHandle:
        """Attach to a running E2B sandbox.

        Raises:
            Exception: If the sandbox is gone or unreachable.
        """
        try:
            sandbox = await asyncio.to_thread(E2BSandbox.connect, sandbox_id, api_key=self.api_key)
        except Exception as e:
            logger.error(f"Failed to reconnect to E2B sandbox {sandbox_id}: {e}")
            raise
        return E2BSandboxHandle(sandbox)
