"""Member portal guard API."""

import logging

from fastapi import FastAPI

from portal_guard.api.routes import admin_security, auth, comments, health, lessons
from portal_guard.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Portal Guard", version="0.1.0")

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(health.router)
    app.include_router(lessons.router)
    app.include_router(auth.router)
    app.include_router(comments.router)
    app.include_router(admin_security.router)

    logger.info("Portal guard API configured", extra={"routes": len(app.routes)})
    return app


app = create_app()
