"""
Railway-Oriented Programming (ROP) framework used by the signing pipeline.

Explicit, composable error handling — adapters return Result, never raise.

    from railway import Result, ErrorCode

    def require_48(body: str) -> Result[str]:
        if len(body) != 48:
            return Result.failure(ErrorCode.INVALID_LENGTH, f"got {len(body)} digits")
        return Result.success(body)
"""

from railway.result import Result, ResultError, Success, Failure
from railway.failure import ErrorCategory, ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
)
from railway.result_failures import ResultFailures
from railway.assertions import ResultAssertions

__all__ = [
    "Result",
    "ResultError",
    "Success",
    "Failure",
    "ErrorCategory",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultFailures",
    "ResultAssertions",
]

__version__ = "1.1.0"
