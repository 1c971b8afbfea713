import logging
import traceback
from typing import Any, Dict, Type

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .exceptions import (
    InsufficientBalanceError,
    InvariantViolationError,
    PointsDisabledError,
    PointsException,
    TransientStorageError,
    ValidationError,
)

logger = logging.getLogger("diaryapi")

# 하위 클래스가 먼저 매칭되도록 MRO 순서로 조회
STATUS_CODES: Dict[Type[PointsException], int] = {
    ValidationError: 422,
    InsufficientBalanceError: 400,
    PointsDisabledError: 409,
    TransientStorageError: 503,
    InvariantViolationError: 500,
}


def status_code_for(exc: PointsException) -> int:
    for klass in type(exc).__mro__:
        if klass in STATUS_CODES:
            return STATUS_CODES[klass]
    return 500


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
    }


async def handle_points_exception(request: Request, exc: PointsException):
    ctx = _request_context(request)
    status_code = status_code_for(exc)
    message = (
        f"[{type(exc).__name__}] {ctx['method']} {ctx['url']} from {ctx['client']} "
        f"-> {status_code}: {exc.message}"
    )
    if status_code >= 500:
        logger.error(message)
    else:
        logger.warning(message)

    headers = {"Retry-After": "1"} if isinstance(exc, TransientStorageError) else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


async def handle_http_exception(request: Request, exc: HTTPException):
    ctx = _request_context(request)
    error_msg = f"[HTTPException] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.detail}"

    if exc.status_code >= 500:
        tb_str = "".join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {
            "success": False,
            "error": {
                "code": "HTTP_ERROR",
                "message": str(exc.detail),
                "details": {},
            },
        }
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    ctx = _request_context(request)
    logger.warning(
        f"[ValidationError] {ctx['method']} {ctx['url']} from {ctx['client']} -> 422: {exc.errors()}"
    )
    content = {
        "success": False,
        "error": {
            "code": ValidationError.error_code,
            "message": "Validation failed",
            "details": {"errors": jsonable_errors(exc)},
        },
    }
    return JSONResponse(status_code=422, content=content)


async def handle_unexpected_error(request: Request, exc: Exception):
    ctx = _request_context(request)

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"\n{'=' * 80}\n"
        f"[Unhandled Error] {ctx['method']} {ctx['url']} from {ctx['client']}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
        f"{'=' * 80}"
    )

    content = {
        "success": False,
        "error": {
            "code": "SERVER_001",
            "message": "Internal server error",
            "details": {},
        },
    }
    return JSONResponse(status_code=500, content=content)


def jsonable_errors(exc: RequestValidationError):
    # ctx 안의 예외 객체 등 직렬화 불가 값을 문자열로 변환
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PointsException, handle_points_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
