"""Rendering of domain errors as HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..domain.errors import IamError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handler turning every ``IamError`` into ``{"detail": message}``."""

    @app.exception_handler(IamError)
    async def handle_iam_error(request: Request, exc: IamError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
