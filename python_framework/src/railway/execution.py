"""
Execution contexts — separate WHAT (pure logic) from HOW (side effects).

A pipeline stage describes what should happen and returns Result[T]; an
execution context decides how it runs (timing, structured logging). The two
are never mixed, so stages stay testable with NoOpExecutionContext.

    ctx = LoggingExecutionContext(operation="SigningPipeline", document_type="01")
    result = ctx.execute(lambda: pipeline.process(document, credential))
"""

from __future__ import annotations

import time
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

import structlog

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
log = structlog.get_logger("railway.execution")


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything with execute(computation) -> Result satisfies this protocol."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...


class NoOpExecutionContext:
    """Passthrough execution context — runs the computation as is."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()


class LoggingExecutionContext:
    """
    Execution context that logs start, duration and outcome of a computation.

    Extra keyword arguments are bound to every event. A failure is logged with
    its code and category; an exception escaping the computation is turned
    into Failure(UNKNOWN_ERROR) so nothing leaks past the context.
    """

    def __init__(
        self,
        inner: ExecutionContext | None = None,
        operation: str = "unknown",
        **context: Any,
    ) -> None:
        self._inner = inner or NoOpExecutionContext()
        self._operation = operation
        self._log = log.bind(operation=operation, **context)

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        self._log.info("execution.started")
        start = time.monotonic()

        try:
            result = self._inner.execute(computation)
        except Exception as e:
            elapsed = time.monotonic() - start
            self._log.error("execution.crashed", elapsed_s=round(elapsed, 3), error=str(e))
            return Failure(
                FailureDescription(
                    ErrorCode.UNKNOWN_ERROR,
                    f"{self._operation} crashed: {e}",
                    e,
                )
            )

        elapsed = round(time.monotonic() - start, 3)
        if result.is_success():
            self._log.info("execution.completed", elapsed_s=elapsed, state="SUCCESS")
        else:
            err = result.error()
            self._log.warning(
                "execution.completed",
                elapsed_s=elapsed,
                state="FAILURE",
                code=err.code.value,
                category=err.category.value,
                failure=err.message,
            )
        return result
