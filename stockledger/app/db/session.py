from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from stockledger.app.core.config import Settings


def make_engine(settings: Settings) -> Engine:
    connect_args = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        # sessions are handed to worker threads by the ASGI server
        connect_args["check_same_thread"] = False

    return create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        echo=settings.SQL_ECHO,
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
