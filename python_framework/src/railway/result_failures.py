"""
Convenience factory methods for the common failures of the signing pipeline.

    ResultFailures.input_error("Document is not well-formed XML: ...")
    ResultFailures.rejected("El SRI devolvió el comprobante", messages)
"""

from __future__ import annotations

from typing import Any, Sequence, TypeVar

from railway.failure import ErrorCode
from railway.result import Result

T = TypeVar("T")


class ResultFailures:
    """Factory methods for the failure codes used at most call sites."""

    @staticmethod
    def invalid_length(actual: int, expected: int = 48) -> Result:
        return Result.failure(
            ErrorCode.INVALID_LENGTH,
            f"Access key body must have {expected} digits, got {actual}",
            details=(("length", actual),),
        )

    @staticmethod
    def input_error(message: str, *details: Any) -> Result:
        """Malformed source XML or missing required element."""
        return Result.failure(ErrorCode.MALFORMED_INPUT, message, details=tuple(details))

    @staticmethod
    def schema_violation(message: str, errors: Sequence[str]) -> Result:
        return Result.failure(ErrorCode.SCHEMA_VIOLATION, message, details=tuple(errors))

    @staticmethod
    def signing_failure(message: str, exception: BaseException | None = None) -> Result:
        return Result.failure(ErrorCode.SIGNING_FAILURE, message, exception)

    @staticmethod
    def rejected(message: str, messages: Sequence[Any]) -> Result:
        """Authority rejection; the message records travel untouched in details."""
        return Result.failure(ErrorCode.REJECTED, message, details=tuple(messages))

    @staticmethod
    def configuration_error(message: str) -> Result:
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, message)
