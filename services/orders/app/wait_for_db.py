"""Block until Postgres answers, backing off exponentially. Never gives up."""
import time
from typing import Callable

from shared.core import get_logger, setup_logging

logger = get_logger(__name__)

def wait_for_store(
    ping: Callable[[], None],
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``ping`` until it succeeds; returns the number of attempts made."""
    delay = initial_delay
    attempt = 1
    while True:
        try:
            ping()
        except Exception as e:
            logger.warning(
                "worker_db_not_ready",
                extra={'extra_fields': {'attempt': attempt, 'err': str(e), 'retry_ms': int(delay * 1000)}}
            )
            sleep(delay)
            delay = min(delay * 2, max_delay)
            attempt += 1
            continue
        logger.info("worker_db_ready", extra={'extra_fields': {'attempts': attempt}})
        return attempt

if __name__ == "__main__":
    from app.core_settings import get_settings
    from app.infrastructure.db import create_db_engine, ping

    settings = get_settings()
    setup_logging(service_name="wait-for-db", level=settings.LOG_LEVEL)
    engine = create_db_engine(settings.database_url)
    wait_for_store(
        lambda: ping(engine),
        initial_delay=settings.DB_WAIT_INITIAL_MS / 1000,
        max_delay=settings.DB_WAIT_MAX_MS / 1000,
    )
    engine.dispose()
