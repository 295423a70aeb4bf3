from typing import Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import logging
from db.postgres import close_postgres, init_postgres
from settings.logging_config import configure_logging
from statements.statement_routes import router as statements_router

logger = logging.getLogger(__name__)


def get_app(init_db: bool = True) -> FastAPI:
    configure_logging()
    logger.info("Starting statement pipeline API")
    app = FastAPI(title="Statement Pipeline API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if init_db:
        @app.on_event("startup")
        async def on_startup() -> None:
            logger.info("Initializing database")
            await init_postgres()

        @app.on_event("shutdown")
        async def on_shutdown() -> None:
            logger.info("Closing database")
            await close_postgres()

    app.include_router(statements_router)

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    logger.info("API started")
    return app


# ASGI app instance
app = get_app()
