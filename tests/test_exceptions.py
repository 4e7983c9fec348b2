# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

import errno
from unittest.mock import MagicMock

import pytest
from e2b import NotFoundException, TimeoutException

from coreason_agent_sandbox.exceptions import (
    CommandError,
    ConfigError,
    ErrorKind,
    RequestError,
    SandboxGoneError,
    SandboxTimeoutError,
    TransportError,
    classify_transport_error,
)
from coreason_agent_sandbox.models import CommandResult


class StatusError(Exception):
    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


def test_gone_by_status() -> None:
    assert classify_transport_error(StatusError(410)) is ErrorKind.GONE


def test_gone_by_response_status() -> None:
    error = Exception("request failed")
    error.response = MagicMock(status_code=410)  # type: ignore[attr-defined]
    assert classify_transport_error(error) is ErrorKind.GONE


def test_gone_by_not_found() -> None:
    assert classify_transport_error(NotFoundException("sandbox not found")) is ErrorKind.GONE


@pytest.mark.parametrize(
    "error",
    [
        TimeoutError(),
        TimeoutException("deadline"),
        OSError(errno.ETIMEDOUT, "connect"),
        Exception("Request Timeout"),
        Exception("operation timed out"),
    ],
)
def test_timeout(error: Exception) -> None:
    assert classify_transport_error(error) is ErrorKind.TIMEOUT


def test_other_status_is_generic() -> None:
    assert classify_transport_error(StatusError(500)) is ErrorKind.GENERIC
    assert classify_transport_error(ValueError("bad")) is ErrorKind.GENERIC


def test_typed_errors_keep_their_kind() -> None:
    assert classify_transport_error(SandboxGoneError()) is ErrorKind.GONE
    assert classify_transport_error(SandboxTimeoutError("slow")) is ErrorKind.TIMEOUT
    assert classify_transport_error(TransportError("x")) is ErrorKind.GENERIC
    assert classify_transport_error(ConfigError("missing key")) is ErrorKind.GENERIC


def test_error_payloads() -> None:
    result = CommandResult(success=False, exit_code=1, stderr="boom", command="rm x")
    error = CommandError("Failed to delete file", result)
    assert str(error) == "Failed to delete file"
    assert error.stderr == "boom"

    assert str(SandboxGoneError()) == "Sandbox is not running"
    assert RequestError("Task not found", status_code=404).status_code == 404
    assert RequestError("bad").status_code == 400
