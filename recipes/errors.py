from __future__ import annotations
import logging
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: str = Field(examples=["not_found"])
    detail: str = Field(examples=["Recipe not found"])
    meta: dict | None = Field(default=None, examples=[{"entity": "RECIPE"}])


class RecipeError(Exception):
    """Base de los errores del dominio; la capa HTTP los traduce a ErrorResponse."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, *, entity: str = "RECIPE", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.details = details

    def to_response(self) -> ErrorResponse:
        meta: Dict[str, Any] = {"entity": self.entity}
        if self.details:
            meta.update(self.details)
        return ErrorResponse(code=self.code, detail=self.message, meta=meta)


class ValidationError(RecipeError):
    code = "validation_error"
    status_code = 400


class NotFound(RecipeError):
    code = "not_found"
    status_code = 404


class Forbidden(RecipeError):
    code = "forbidden"
    status_code = 403


class PersistenceError(RecipeError):
    code = "persistence_error"
    status_code = 500


class InternalError(RecipeError):
    code = "internal_error"
    status_code = 500


def install_exception_handlers(app: FastAPI):
    @app.exception_handler(RecipeError)
    async def recipe_error_handler(request: Request, exc: RecipeError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code_map: Dict[int, str] = {
            400: "bad_request",
            401: "unauthorized",
            403: "forbidden",
            404: "not_found",
            409: "conflict",
            413: "payload_too_large",
            422: "validation_error",
            429: "rate_limited",
            500: "internal_error",
        }
        payload = ErrorResponse(code=code_map.get(exc.status_code, "error"), detail=str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
        payload = ErrorResponse(code="validation_error", detail="Validation failed", meta={"errors": errors})
        return JSONResponse(status_code=400, content=payload.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        payload = InternalError("Internal server error").to_response()
        return JSONResponse(status_code=500, content=payload.model_dump())
