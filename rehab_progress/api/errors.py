"""Exception handlers mapping engine errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rehab_progress.plans.errors import (
    AlertNotFound,
    CollaboratorError,
    ConcurrentModification,
    DayLocked,
    DuplicatePlanConflict,
    InvalidStateTransition,
    PlanNotFound,
    RehabEngineError,
    UnknownExercise,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[RehabEngineError], int] = {
    ValidationError: 422,
    PlanNotFound: 404,
    AlertNotFound: 404,
    UnknownExercise: 404,
    DuplicatePlanConflict: 409,
    InvalidStateTransition: 409,
    DayLocked: 409,
    ConcurrentModification: 409,
    CollaboratorError: 502,
}


def status_for(exc: RehabEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def register_exception_handlers(app: FastAPI, debug: bool = False) -> None:
    @app.exception_handler(RehabEngineError)
    async def engine_error_handler(request: Request, exc: RehabEngineError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if debug else None,
            },
        )
