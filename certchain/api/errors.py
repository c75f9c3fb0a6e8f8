"""
CertChain — HTTP error mapping

The one place where engine error kinds become HTTP status codes. Routers
never catch engine errors themselves.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from certchain.errors import AuthorizationError, CertChainError, DenyReason, ErrorKind

logger = structlog.get_logger("certchain.api.errors")

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.ESTIMATION: 422,
    # Broadcast but unconfirmed: accepted, outcome pending
    ErrorKind.CONFIRMATION: 202,
    ErrorKind.SUBMISSION: 502,
    ErrorKind.UPLOAD: 502,
    ErrorKind.LEDGER_READ: 503,
    ErrorKind.STORE: 503,
}


def status_for(exc: CertChainError) -> int:
    if isinstance(exc, AuthorizationError) and exc.reason is DenyReason.SERVICE_ERROR:
        return 503
    return _STATUS_BY_KIND.get(exc.kind, 500)


async def _handle_engine_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, CertChainError)
    status = status_for(exc)
    log = logger.warning if status < 500 else logger.error
    log(
        "request_failed",
        method=request.method,
        path=request.url.path,
        status=status,
        kind=exc.kind.value,
        stage=exc.stage.value if exc.stage else None,
        error=exc.message,
    )
    return JSONResponse(status_code=status, content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CertChainError, _handle_engine_error)
