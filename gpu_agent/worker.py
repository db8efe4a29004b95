"""Background scheduler that ticks every open run on an interval."""

import logging
import threading
from typing import Optional

from gpu_agent.config import Settings, settings
from gpu_agent.database import Database
from gpu_agent.engine import TickEngine
from gpu_agent.services.ledger import LedgerStore

logger = logging.getLogger(__name__)


class Worker:
    """Ticks open runs one after another; one tick per run per pass."""

    def __init__(self, database: Database, engine: TickEngine, poll_interval: int = 10):
        self.database = database
        self.engine = engine
        self.poll_interval = poll_interval

    def open_run_ids(self):
        db = self.database.session()
        try:
            return [run.id for run in LedgerStore(db).list_open_runs()]
        finally:
            db.close()

    def run_once(self) -> int:
        """Tick each open run once. Returns the number of runs ticked."""
        run_ids = self.open_run_ids()
        for run_id in run_ids:
            self.engine.tick(run_id)
        return len(run_ids)

    def run(self, stop_event: Optional[threading.Event] = None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        stop_event = stop_event or threading.Event()
        logger.info(f"Worker started, polling every {self.poll_interval}s")

        while not stop_event.is_set():
            try:
                ticked = self.run_once()
                if ticked:
                    logger.info(f"Ticked {ticked} open run(s)")
            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)

            stop_event.wait(self.poll_interval)

        logger.info("Worker stopped")


def main(app_settings: Settings = settings):
    """Entry point for standalone worker."""
    logging.basicConfig(
        level=app_settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    database = Database(
        app_settings.DATABASE_URL,
        connect_timeout=app_settings.DB_CONNECT_TIMEOUT_SECONDS,
        statement_timeout_ms=app_settings.DB_STATEMENT_TIMEOUT_MS,
    )
    engine = TickEngine.from_settings(app_settings, database)
    try:
        Worker(database, engine, poll_interval=app_settings.WORKER_POLL_INTERVAL).run()
    finally:
        engine.close()
        database.dispose()


if __name__ == "__main__":
    main()
