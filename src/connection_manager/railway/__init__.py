"""
Railway-Oriented error handling for the connection manager.

    from connection_manager.railway import Result, ErrorCode

    def require_body(body: dict | None) -> Result[dict]:
        if body is None:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Invalid body None")
        return Result.success(body)
"""

from connection_manager.railway.assertions import ResultAssertions
from connection_manager.railway.execution import (
    ExecutionContext,
    LoggingExecutionContext,
    NoOpExecutionContext,
)
from connection_manager.railway.failure import ErrorCode, FailureDescription
from connection_manager.railway.result import (
    Failure,
    Result,
    Success,
    not_found,
    validation_error,
)

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "not_found",
    "validation_error",
    "ResultAssertions",
]
