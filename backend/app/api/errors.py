"""Translate configuration-engine errors into HTTP responses."""
import logging
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse
from app.services.errors import ConflictError, EngineError, NotFoundError, ValidationError

logger = logging.getLogger("autoerp-api")

STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 422),
    (ConflictError, 409),
)


def error_response(exc: EngineError) -> JSONResponse:
    status_code = next((code for cls, code in STATUS_BY_ERROR if isinstance(exc, cls)), 400)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": str(exc), "error": exc.to_dict()},
    )


def request_validation_response(exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {where}: {first.get('msg')}" if first else "Invalid request"
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": message,
            "error": {
                "type": "RequestValidationError",
                "message": message,
                "invariant": "invalid_payload",
                "details": errors,
            },
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def _engine_error(request: Request, exc: EngineError):
        logger.info(
            "%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc,
        )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        logger.info("%s %s -> RequestValidationError", request.method, request.url.path)
        return request_validation_response(exc)
