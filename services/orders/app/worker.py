"""
Fulfillment worker process.

Run as many copies as needed; they coordinate only through row locks in the
orders table. SIGINT/SIGTERM finish the current order and exit.
"""

import os
import signal
import sys

from shared.core import setup_logging, get_logger
from app.core_settings import Settings, get_settings
from app.infrastructure.db import create_db_engine, create_session_factory, ping
from app.application.fulfillment import FulfillmentWorker, SimulatedFulfillment
from app.wait_for_db import wait_for_store

SERVICE_NAME = "fulfillment-worker"

logger = get_logger(__name__)

def build_worker(settings: Settings, session_factory) -> FulfillmentWorker:
    return FulfillmentWorker(
        session_factory,
        fulfill=SimulatedFulfillment(settings.WORK_MS / 1000),
        poll_interval=settings.POLL_MS / 1000,
        error_backoff=settings.ERROR_BACKOFF_MS / 1000,
    )

def install_signal_handlers(worker: FulfillmentWorker) -> None:
    def _handle(signum, frame):
        logger.info("worker_stopping", extra={'extra_fields': {'signal': signal.Signals(signum).name}})
        worker.stop()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)

def main() -> int:
    settings = get_settings()
    setup_logging(service_name=SERVICE_NAME, level=os.getenv("LOG_LEVEL", settings.LOG_LEVEL))

    engine = None
    try:
        engine = create_db_engine(settings.database_url)
        wait_for_store(
            lambda: ping(engine),
            initial_delay=settings.DB_WAIT_INITIAL_MS / 1000,
            max_delay=settings.DB_WAIT_MAX_MS / 1000,
        )
        worker = build_worker(settings, create_session_factory(engine))
        install_signal_handlers(worker)
        logger.info(
            "worker_configured",
            extra={'extra_fields': {'poll_ms': settings.POLL_MS, 'work_ms': settings.WORK_MS}}
        )
        worker.run()
    except Exception as e:
        logger.critical("worker_crashed", exc_info=True, extra={'extra_fields': {'err': str(e)}})
        return 1
    finally:
        if engine is not None:
            engine.dispose()
    return 0

if __name__ == "__main__":
    sys.exit(main())
