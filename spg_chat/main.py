"""FastAPI application factory for the chat API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi_pagination import add_pagination

from spg_chat.config import get_settings
from spg_chat.infra.logging_config import configure_logging
from spg_chat.routers.conversations_router import conversations_router
from spg_chat.routers.media_router import router as media_router

logger = logging.getLogger(__name__)


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    configure_logging("DEBUG" if testing else settings.log_level)

    app = FastAPI(title=settings.app_name)
    app.include_router(conversations_router)
    app.include_router(media_router)

    @app.get("/health", tags=["system"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    add_pagination(app)
    logger.info("%s started (environment=%s)", settings.app_name, settings.environment)
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
