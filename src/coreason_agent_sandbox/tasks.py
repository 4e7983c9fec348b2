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
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from coreason_agent_sandbox.models import TaskRecord


@runtime_checkable
class TaskStore(Protocol):
    """Read access to persisted tasks."""

    async def find_task(self, task_id: str, user_id: str) -> TaskRecord | None:
        """Return the task if it exists, is owned by ``user_id`` and is not soft-deleted."""
        ...  # pragma: no cover


class InMemoryTaskStore:
    """Process-local TaskStore used by the MCP server and the tests."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, task: TaskRecord) -> None:
        async with self._lock:
            self._tasks[task.id] = task

    async def find_task(self, task_id: str, user_id: str) -> TaskRecord | None:
        async with self._lock:
            task = self._tasks.get(task_id)
        if task is None or task.user_id != user_id or task.deleted_at is not None:
            return None
        return task

    async def update(self, task_id: str, **fields: object) -> TaskRecord | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            updated = task.model_copy(update=fields)
            self._tasks[task_id] = updated
        return updated

    async def soft_delete(self, task_id: str) -> None:
        await self.update(task_id, deleted_at=datetime.now(timezone.utc))
