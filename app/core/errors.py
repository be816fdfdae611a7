"""
Error taxonomy for the identification-and-unlock pipeline.

Every error carries a stable public code and an HTTP status. Internal detail
(provider payloads, which of the session failures occurred) goes to the log
only; clients see the code and a generic message.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class UnlockError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None, **context) -> None:
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail
        self.context = context


class InvalidRequest(UnlockError):
    code = "INVALID_REQUEST"
    status_code = 400
    public_message = "The request is invalid."


class InvalidMsisdn(UnlockError):
    code = "INVALID_MSISDN"
    status_code = 400
    public_message = "The phone number could not be recognised."


class InvalidSignature(UnlockError):
    code = "INVALID_SIGNATURE"
    status_code = 401
    public_message = "The request could not be verified."


class Unauthorized(UnlockError):
    code = "UNAUTHORIZED"
    status_code = 401
    public_message = "Unauthorized."


class NotIdentified(UnlockError):
    code = "NOT_IDENTIFIED"
    status_code = 401
    public_message = "Please identify with your mobile number first."


class NetworkNotEligible(UnlockError):
    """ClassificationUnknown / WIFI: carrier billing needs mobile data."""

    code = "NETWORK_NOT_ELIGIBLE"
    status_code = 403
    public_message = "Please switch to mobile data (4G/5G) to unlock this article."


class SessionError(UnlockError):
    """Token misuse or replay. Subclasses share one public code on purpose."""

    code = "SESSION_INVALID"
    status_code = 403
    public_message = "This link is no longer valid. Please start again."


class SessionNotFound(SessionError):
    pass


class SessionExpired(SessionError):
    pass


class SessionAlreadyConsumed(SessionError):
    pass


class ArticleNotFound(UnlockError):
    code = "ARTICLE_NOT_FOUND"
    status_code = 404
    public_message = "Article not found."


class LedgerConflict(UnlockError):
    """Completion callback for a transaction we never initiated."""

    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
    public_message = "Transaction not found."


class ProviderError(UnlockError):
    code = "PROVIDER_ERROR"
    status_code = 502
    public_message = "The payment provider is unavailable. Please try again."


class IdentificationFailed(ProviderError):
    public_message = "We could not identify your mobile number. Please try again."


class ProviderTimeout(ProviderError):
    code = "PROVIDER_TIMEOUT"
    status_code = 504


def error_body(code: str, message: str) -> dict:
    return {"success": False, "error": {"code": code, "message": message}}


async def unlock_error_handler(request: Request, exc: UnlockError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error_code": exc.code,
            "error": f"{type(exc).__name__}: {exc.detail or ''}".strip(),
            **{k: v for k, v in exc.context.items() if k in ("token", "transaction_id", "article_id")},
        },
    )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.public_message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "request_crashed",
        extra={"path": request.url.path, "method": request.method, "error": type(exc).__name__},
    )
    return JSONResponse(status_code=500, content=error_body(UnlockError.code, UnlockError.public_message))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UnlockError, unlock_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
