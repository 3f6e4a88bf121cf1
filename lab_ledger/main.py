import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlmodel import select

from lab_ledger.config import Settings, get_settings
from lab_ledger.db import Store
from lab_ledger.errors import LedgerError
from lab_ledger.logging_config import configure_logging
from lab_ledger.models import Role, User
from lab_ledger.routers import allocations, auth, items, requests, stock
from lab_ledger.security import hash_password
from lab_ledger.services.coordinator import TransactionCoordinator

logger = logging.getLogger(__name__)


def bootstrap_admin(store: Store, username: str, password: str) -> None:
    with store.session() as session:
        if session.exec(select(User).where(User.username == username)).first():
            return
        session.add(User(username=username, password_hash=hash_password(password), role=Role.ADMIN.value))
        session.commit()
    logger.info("bootstrap admin created", extra={"username": username})


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        ledger_store = store or Store(settings.database_url, busy_timeout=settings.store_busy_timeout)
        ledger_store.open()
        if settings.bootstrap_admin_username and settings.bootstrap_admin_password:
            bootstrap_admin(ledger_store, settings.bootstrap_admin_username, settings.bootstrap_admin_password)

        app.state.store = ledger_store
        app.state.coordinator = TransactionCoordinator(
            ledger_store,
            max_attempts=settings.store_max_attempts,
            retry_backoff=settings.store_retry_backoff,
        )
        yield
        ledger_store.close()

    app = FastAPI(title="Lab Ledger", lifespan=lifespan)
    app.state.settings = settings

    app.include_router(auth.router)
    app.include_router(items.router)
    app.include_router(stock.router)
    app.include_router(requests.router)
    app.include_router(allocations.router)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"code": "VALIDATION_ERROR", "message": "Request validation failed", "errors": jsonable_encoder(exc.errors())},
        )

    return app


app = create_app()
