# apps/backend/middleware/errors.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from apps.backend.repositories.ledger_repository import LedgerStoreError
from apps.backend.services.core_service import CoreError
from apps.backend.services.identity_gateway import IdentityGatewayError
from apps.backend.utils.envelope import error

log = logging.getLogger("clanpoints.errors")

LOGIN_PATH = "/login"
GENERIC_FAILURE = "Something went wrong. Please try again."


def install_error_handlers(app: FastAPI) -> None:
    """
    Stable envelopes for every failure; no stack traces leave the process.
    """

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError):
        if exc.status_code == 401:
            return error(exc.message, code=exc.code, status=401, redirect=LOGIN_PATH)
        return error(exc.message, code=exc.code, status=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = (exc.errors() or [{}])[0]
        loc = ".".join(str(x) for x in first.get("loc", ()) if x not in ("body", "query"))
        msg = first.get("msg", "Invalid input")
        return error(f"{loc}: {msg}" if loc else msg, code="validation", status=400)

    @app.exception_handler(LedgerStoreError)
    async def store_error_handler(request: Request, exc: LedgerStoreError):
        log.error("Ledger store failure on %s %s: %s", request.method, request.url.path, exc)
        return error(GENERIC_FAILURE, code="store_failure", status=502)

    @app.exception_handler(IdentityGatewayError)
    async def identity_error_handler(request: Request, exc: IdentityGatewayError):
        log.error("Identity gateway failure on %s %s: %s", request.method, request.url.path, exc)
        return error("Could not authenticate. Please sign in again.", code="authentication_failed", status=401, redirect=LOGIN_PATH)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error(GENERIC_FAILURE, code="internal_error", status=500)
