"""Load the product catalogue from CSV (sku,name,inventory). Existing SKUs are left alone."""
import csv
import sys
import time
from pathlib import Path
from typing import Iterable, List

from sqlalchemy import inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from shared.core import get_logger, setup_logging
from app.domain.models import Product

logger = get_logger(__name__)

MAX_ATTEMPTS = 30
SLEEP_SECONDS = 2
DEFAULT_FILE = Path(__file__).resolve().parent.parent / "seed_data" / "products.csv"

def wait_for_table(engine: Engine, table: str, attempts: int = MAX_ATTEMPTS, delay: float = SLEEP_SECONDS) -> bool:
    """The API creates the schema on startup; the seeder may run first."""
    for attempt in range(1, attempts + 1):
        if inspect(engine).has_table(table):
            return True
        if attempt == 1:
            logger.info(f"Waiting for table '{table}' to exist...")
        time.sleep(delay)
    return False

def read_products(path: Path) -> List[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        return [
            {"sku": r["sku"].strip(), "name": r["name"].strip(), "inventory": int(r["inventory"])}
            for r in csv.DictReader(f)
        ]

def load_products(session_factory: sessionmaker, rows: Iterable[dict]) -> int:
    rows = list(rows)
    with session_factory() as session, session.begin():
        existing = set(session.execute(select(Product.sku)).scalars())
        new = [Product(**r) for r in rows if r["sku"] not in existing]
        session.add_all(new)
    logger.info(
        "products_seeded",
        extra={'extra_fields': {'inserted': len(new), 'skipped': len(rows) - len(new)}}
    )
    return len(new)

def main(argv: List[str] = None) -> int:
    from app.core_settings import get_settings
    from app.infrastructure.db import create_db_engine, create_session_factory

    argv = sys.argv[1:] if argv is None else argv
    path = Path(argv[0]) if argv else DEFAULT_FILE

    settings = get_settings()
    setup_logging(service_name="orders-seed", level=settings.LOG_LEVEL)
    engine = create_db_engine(settings.database_url)
    try:
        if not wait_for_table(engine, Product.__tablename__):
            logger.error(f"Table '{Product.__tablename__}' not found after waiting")
            return 1
        load_products(create_session_factory(engine), read_products(path))
    finally:
        engine.dispose()
    return 0

if __name__ == "__main__":
    sys.exit(main())
