# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import threading
import time
from dataclasses import dataclass, field

from coreason_agent_sandbox.runtime import SandboxHandle
from coreason_agent_sandbox.utils.logger import logger


@dataclass
class RegistryEntry:
    sandbox: SandboxHandle
    keep_alive: bool = False
    registered_at: float = field(default_factory=time.time)


class SandboxRegistry:
    """Tracks the live sandbox handle of each task.

    Entries are an advisory cache: a missing entry means "reconnect by the persisted
    sandbox id", never "the sandbox does not exist". The registry holds references only
    and performs no lifecycle action; whoever replaces or removes a handle decides
    whether to close it.

    All operations are key-scoped and guarded by a lock, so concurrent task flows (and
    worker threads) cannot corrupt each other's entries.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str, sandbox: SandboxHandle, keep_alive: bool = False) -> None:
        """Associate ``sandbox`` with ``task_id``. A later call for the same id wins.

        Args:
            task_id: The task identifier.
            sandbox: The live handle.
            keep_alive: Keep the sandbox running after the task completes.

        Raises:
            ValueError: If task_id is empty.
        """
        if not task_id:
            raise ValueError("Task ID is required")

        with self._lock:
            previous = self._entries.get(task_id)
            self._entries[task_id] = RegistryEntry(sandbox=sandbox, keep_alive=keep_alive)

        if previous is not None and previous.sandbox is not sandbox:
            logger.info(f"Replaced registered sandbox for task {task_id}")
        logger.debug(f"Registered sandbox {sandbox.sandbox_id} for task {task_id} (keep_alive={keep_alive})")

    def get(self, task_id: str) -> SandboxHandle | None:
        with self._lock:
            entry = self._entries.get(task_id)
        return entry.sandbox if entry else None

    def remove(self, task_id: str) -> SandboxHandle | None:
        """Forget the handle for ``task_id`` and return it, without closing it."""
        with self._lock:
            entry = self._entries.pop(task_id, None)
        return entry.sandbox if entry else None

    def should_keep_alive(self, task_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(task_id)
        return bool(entry and entry.keep_alive)

    def task_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_registry = SandboxRegistry()


def get_registry() -> SandboxRegistry:
    """The process-wide registry shared by every orchestrator entry point."""
    return _registry
