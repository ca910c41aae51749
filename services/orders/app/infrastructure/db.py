from typing import Iterator
from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from app.domain.models import Base

def create_db_engine(database_url: str) -> Engine:
    return create_engine(database_url, echo=False, future=True, pool_pre_ping=True)

def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def ping(engine: Engine) -> None:
    """Trivial round-trip; raises if the store is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1")).fetchone()

def init_models(engine: Engine) -> None:
    Base.metadata.create_all(engine)

def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory

def get_db(request: Request) -> Iterator[Session]:
    db = get_session_factory(request)()
    try:
        yield db
    finally:
        db.close()
