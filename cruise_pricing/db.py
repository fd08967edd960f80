import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .models import Base

PRICING_DATABASE_URL = os.getenv(
    "PRICING_DATABASE_URL",
    "sqlite+pysqlite:///./pricing.db",
)


@lru_cache(maxsize=1)
def default_engine() -> Engine:
    eng = create_engine(PRICING_DATABASE_URL, pool_pre_ping=True)
    Base.metadata.create_all(eng)
    return eng


def get_engine() -> Engine:
    # FastAPI dependency; tests override it with an in-memory engine.
    return default_engine()


def session(engine: Engine) -> Session:
    # Domain objects are built from rows after the session closes; keep
    # attributes loaded across commit to avoid DetachedInstanceError.
    return Session(engine, expire_on_commit=False)
