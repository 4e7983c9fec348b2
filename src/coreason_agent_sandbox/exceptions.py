# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

"""Error taxonomy for sandbox orchestration.

Raw failures from the sandbox vendor are mapped once, at the transport boundary, onto
:class:`ErrorKind` via :func:`classify_transport_error`. Everything above that boundary
works with the typed exceptions defined here.
"""

import errno
from enum import Enum
from typing import TYPE_CHECKING

from e2b import NotFoundException, TimeoutException

if TYPE_CHECKING:  # pragma: no cover
    from coreason_agent_sandbox.models import CommandResult

HTTP_GONE = 410


class ErrorKind(str, Enum):
    """Classified kind of a transport failure."""

    TIMEOUT = "timeout"
    GONE = "gone"
    GENERIC = "generic"


class SandboxError(Exception):
    """Base class for all orchestration errors."""


class ConfigError(SandboxError):
    """Missing or invalid credentials or parameters. Raised before any side effect."""


class TransportError(SandboxError):
    """Sandbox creation, reconnect or process start failed."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.GENERIC):
        super().__init__(message)
        self.kind = kind


class SandboxTimeoutError(TransportError):
    """The sandbox vendor timed out. The user may retry with a smaller input."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.TIMEOUT)


class SandboxGoneError(TransportError):
    """The remote sandbox is no longer running."""

    def __init__(self, message: str = "Sandbox is not running"):
        super().__init__(message, ErrorKind.GONE)


class CommandError(SandboxError):
    """A command exited non-zero or could not be spawned."""

    def __init__(self, message: str, result: "CommandResult"):
        super().__init__(message)
        self.result = result

    @property
    def stderr(self) -> str:
        return self.result.stderr


class RequestError(SandboxError):
    """A request-level precondition failed (unknown task, missing sandbox, bad input)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_transport_error(exc: BaseException) -> ErrorKind:
    """Map a raw transport exception onto an :class:`ErrorKind`.

    Args:
        exc: The exception raised by the sandbox SDK or the network stack.

    Returns:
        ErrorKind: ``GONE`` for HTTP 410 or a vanished sandbox, ``TIMEOUT`` for
        timeouts of any flavour, ``GENERIC`` otherwise.
    """
    if isinstance(exc, SandboxError):
        if isinstance(exc, TransportError):
            return exc.kind
        return ErrorKind.GENERIC

    if _status_of(exc) == HTTP_GONE or isinstance(exc, NotFoundException):
        return ErrorKind.GONE

    if isinstance(exc, (TimeoutError, TimeoutException)):
        return ErrorKind.TIMEOUT
    if getattr(exc, "errno", None) == errno.ETIMEDOUT or getattr(exc, "code", None) == "ETIMEDOUT":
        return ErrorKind.TIMEOUT
    message = str(exc).lower()
    if "timeout" in message or "timed out" in message:
        return ErrorKind.TIMEOUT

    return ErrorKind.GENERIC
