"""
Test assertions for Result values.

    from connection_manager.railway import ResultAssertions

    def test_empty_ports_rejected():
        error = ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        ResultAssertions.assert_failure_message_contains(result, "ports")
"""

from __future__ import annotations

from typing import TypeVar

from connection_manager.railway.failure import ErrorCode, FailureDescription
from connection_manager.railway.result import Result

T = TypeVar("T")


class ResultAssertions:
    """Assertions that print the other track's content when they fail."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert Success and return the value."""
        context = f" ({message})" if message else ""
        assert result.is_success(), f"Expected Success but got {result!r}{context}"
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert Failure, optionally with a given code, and return the description."""
        context = f" ({message})" if message else ""
        assert result.is_failure(), f"Expected Failure but got {result!r}{context}"
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        error = ResultAssertions.assert_failure(result)
        assert substring.lower() in error.message.lower(), (
            f"Expected failure message to contain {substring!r}, got {error.message!r}"
        )
