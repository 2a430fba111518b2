"""
Gestionnaires d'exceptions.
- Toute erreur métier (ShopError) et toute HTTPException sont rendues en {"error": message},
  avec le code HTTP et les en-têtes portés par l'exception (Allow, Retry-After).
- Les erreurs de validation FastAPI deviennent des 400 {"error": ...}.
- Une exception inattendue devient une 500 générique (détails seulement dans les logs).
"""
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.payments.errors import ShopError

logger = logging.getLogger(__name__)

def error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers ShopError, HTTPException, RequestValidationError et Exception.
    """
    @app.exception_handler(ShopError)
    async def shop_error(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
        return error_response(exc.status_code, exc.message, exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, "Invalid request body")

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "Internal server error")
