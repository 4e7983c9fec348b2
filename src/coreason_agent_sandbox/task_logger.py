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
from collections.abc import Awaitable, Callable

from coreason_agent_sandbox.models import TaskLogEntry, TaskLogType
from coreason_agent_sandbox.utils.logger import logger

TaskLogSink = Callable[[TaskLogEntry], Awaitable[None]]


class TaskLogger:
    """User-visible log of one task.

    Every entry is kept in :attr:`entries`, mirrored to loguru with the task id bound,
    and forwarded to an optional async sink (typically the persisted task record).
    Callers pass already-redacted text.
    """

    def __init__(self, task_id: str, sink: TaskLogSink | None = None):
        self.task_id = task_id
        self.entries: list[TaskLogEntry] = []
        self._sink = sink
        self._log = logger.bind(task_id=task_id)
        self._loop: asyncio.AbstractEventLoop | None = None

    async def info(self, message: str) -> None:
        await self._append("info", message)

    async def command(self, command: str) -> None:
        await self._append("command", command)

    async def error(self, message: str) -> None:
        await self._append("error", message)

    async def success(self, message: str) -> None:
        await self._append("success", message)

    def emit(self, message: str, entry_type: TaskLogType = "info") -> None:
        """Record an entry from synchronous code, including SDK callback threads.

        Forwarding to the sink is scheduled on the event loop that last used this logger.
        """
        entry = self._record(entry_type, message)
        if self._sink is not None and self._loop is not None and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(self._forward(entry), self._loop)

    def _record(self, entry_type: TaskLogType, message: str) -> TaskLogEntry:
        entry = TaskLogEntry(type=entry_type, message=message)
        self.entries.append(entry)
        if entry_type == "error":
            self._log.error(message)
        elif entry_type == "command":
            self._log.info(f"$ {message}")
        else:
            self._log.info(message)
        return entry

    async def _append(self, entry_type: TaskLogType, message: str) -> None:
        self._loop = asyncio.get_running_loop()
        entry = self._record(entry_type, message)
        await self._forward(entry)

    async def _forward(self, entry: TaskLogEntry) -> None:
        if self._sink is None:
            return
        try:
            await self._sink(entry)
        except Exception as e:
            logger.warning(f"Failed to persist log entry for task {self.task_id}: {e}")
