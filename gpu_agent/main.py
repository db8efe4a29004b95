"""FastAPI application entry point."""

import logging
import os
import threading
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import inspect

from gpu_agent.config import Settings, settings
from gpu_agent.database import Database
from gpu_agent.engine import TickEngine
from gpu_agent.routes import runs, vendors

logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "alembic.ini")


def run_migrations(database: Database) -> None:
    """Apply migrations unless the schema is already in place."""
    if inspect(database.engine).has_table("observations"):
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(ALEMBIC_INI)
    alembic_cfg.set_main_option("sqlalchemy.url", database.engine.url.render_as_string(hide_password=False))
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


def create_app(
    app_settings: Settings = settings,
    database: Optional[Database] = None,
    engine: Optional[TickEngine] = None,
) -> FastAPI:
    """Build the application. Anything not injected is created at startup and closed at shutdown."""
    app = FastAPI(
        title="GPU Agent",
        description="Budget-constrained GPU procurement agent",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(runs.router)
    app.include_router(vendors.router)

    app.state.database = database
    app.state.engine = engine
    owned = {"database": database is None, "engine": engine is None}
    worker_stop_event = threading.Event()
    worker_threads = []

    @app.on_event("startup")
    def startup_event():
        logger.info("Starting application...")
        if app.state.database is None:
            app.state.database = Database(
                app_settings.DATABASE_URL,
                connect_timeout=app_settings.DB_CONNECT_TIMEOUT_SECONDS,
                statement_timeout_ms=app_settings.DB_STATEMENT_TIMEOUT_MS,
            )
            try:
                run_migrations(app.state.database)
            except Exception as e:
                logger.error(f"Startup database check/migration error: {e}")
                logger.info("Continuing startup - assuming database is ready")

        if app.state.engine is None:
            app.state.engine = TickEngine.from_settings(app_settings, app.state.database)

        if app_settings.WORKER_ENABLED:
            from gpu_agent.worker import Worker

            worker = Worker(app.state.database, app.state.engine, poll_interval=app_settings.WORKER_POLL_INTERVAL)
            thread = threading.Thread(target=worker.run, args=(worker_stop_event,), daemon=True)
            thread.start()
            worker_threads.append(thread)
            logger.info("Background worker thread started")

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Shutting down application...")
        worker_stop_event.set()
        for thread in worker_threads:
            thread.join(timeout=10)

        if owned["engine"] and app.state.engine is not None:
            app.state.engine.close()
        if owned["database"] and app.state.database is not None:
            app.state.database.dispose()

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app()
