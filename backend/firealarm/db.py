"""Database engine, session factory and dialect helpers."""

import os
from typing import Iterator

from sqlalchemy import BigInteger, create_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.expression import FunctionElement

from .config import settings
from .models import Base


def _make_engine(url: str):
    if url.startswith("sqlite"):
        path = url.split("///", 1)[1] if "///" in url else ""
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db(bind=None) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class epoch_millis(FunctionElement):
    """Whole milliseconds since the Unix epoch for a naive-UTC datetime column."""

    type = BigInteger()
    name = "epoch_millis"
    inherit_cache = True


@compiles(epoch_millis)
def _epoch_millis_default(element, compiler, **kw):
    return "CAST(ROUND(EXTRACT(EPOCH FROM %s) * 1000) AS BIGINT)" % compiler.process(element.clauses, **kw)


@compiles(epoch_millis, "sqlite")
def _epoch_millis_sqlite(element, compiler, **kw):
    # strftime('%s') drops the fraction; '%f' is "SS.SSS", so its last three digits are the millis
    column = compiler.process(element.clauses, **kw)
    return (
        "(CAST(strftime('%%s', %s) AS INTEGER) * 1000"
        " + CAST(substr(strftime('%%f', %s), 4) AS INTEGER))" % (column, column)
    )
