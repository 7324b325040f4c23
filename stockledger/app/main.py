from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.core.config import Settings, get_settings
from stockledger.app.core.logging import setup_logging
from stockledger.app.db.session import make_engine, make_session_factory
from stockledger.services.errors import (
    DuplicateStockRecord,
    InvalidStatusTransition,
    LedgerBusy,
    LedgerError,
    NotFound,
    OrderLocked,
    StockNotEmpty,
)
from stockledger.services.locks import KeyedLock

logger = logging.getLogger(__name__)

CONFLICT_ERRORS = (DuplicateStockRecord, StockNotEmpty, InvalidStatusTransition, OrderLocked)


def status_for(exc: LedgerError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, LedgerBusy):
        return 503
    if isinstance(exc, CONFLICT_ERRORS):
        return 409
    return 422


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={
            "error_code": exc.code,
            "message": exc.message,
            "context": jsonable_encoder(exc.context),
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the API. The engine is created when the app starts and disposed when
    it stops; nothing database-related lives at module level.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(settings)
        app.state.session_factory = make_session_factory(engine)
        logger.info("stockledger started env=%s", settings.ENV)
        try:
            yield
        finally:
            engine.dispose()

    app = FastAPI(title="StockLedger", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.locks = KeyedLock()
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
