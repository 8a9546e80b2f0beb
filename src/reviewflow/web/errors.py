"""Translation of workflow exceptions into HTTP responses.

    InvalidScoreError, InvalidDecisionError -> 422
    InvalidTransitionError                  -> 400
    ReviewerIneligibleError (and subtypes)  -> 403
    WorkflowConflictError (and subtypes)    -> 409
    EntityNotFoundError                     -> 404
    operation deadline exceeded             -> 504
"""

from __future__ import annotations

import asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reviewflow.logging import get_logger
from reviewflow.workflow.errors import (
    EntityNotFoundError,
    InvalidDecisionError,
    InvalidScoreError,
    InvalidTransitionError,
    ReviewerIneligibleError,
    WorkflowConflictError,
    WorkflowError,
)

logger = get_logger(__name__)


def status_for(exc: WorkflowError) -> int:
    if isinstance(exc, (InvalidScoreError, InvalidDecisionError)):
        return 422
    if isinstance(exc, InvalidTransitionError):
        return 400
    if isinstance(exc, ReviewerIneligibleError):
        return 403
    if isinstance(exc, WorkflowConflictError):
        return 409
    if isinstance(exc, EntityNotFoundError):
        return 404
    return 400


def error_code(exc: WorkflowError) -> str:
    """Stable machine-readable code, e.g. ``concurrent_transition``."""
    name = type(exc).__name__.removesuffix("Error")
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name).lstrip("_")


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = status_for(exc)
    logger.info(
        "workflow_request_rejected",
        path=request.url.path,
        status_code=status_code,
        error=error_code(exc),
        detail=str(exc),
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": error_code(exc)},
    )


async def timeout_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("workflow_request_timed_out", path=request.url.path)
    return JSONResponse(
        status_code=504,
        content={"detail": "Operation timed out", "error": "timeout"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncio.TimeoutError, timeout_handler)
