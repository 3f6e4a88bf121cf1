import logging
from typing import Optional

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

logger = logging.getLogger(__name__)

SQLITE_BEGIN = "sqlite_begin"
WRITE_LOCK = {SQLITE_BEGIN: "IMMEDIATE"}


class Store:
    """
    Owns the engine for one database.

    Built once at process start, opened by the app lifespan and disposed at
    shutdown. On SQLite a write transaction (see ``lock_for_write``) starts
    with ``BEGIN IMMEDIATE`` so writers queue on the database lock (up to
    ``busy_timeout`` seconds) and a read made inside it is never stale by the
    time it is written back. Read-only sessions use a plain deferred BEGIN and
    do not wait on writers. Other backends rely on ``SELECT ... FOR UPDATE``
    in the stock guard.
    """

    def __init__(
        self,
        database_url: str = "sqlite:///./lab_ledger.db",
        *,
        busy_timeout: float = 5.0,
        engine: Optional[Engine] = None,
    ):
        self.database_url = database_url if engine is None else str(engine.url)
        self.busy_timeout = busy_timeout
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Store is not open")
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def open(self) -> "Store":
        if self._engine is None:
            self._engine = create_engine(self.database_url, connect_args=self._connect_args())
        if self.is_sqlite:
            _serialize_sqlite_writers(self._engine)
        SQLModel.metadata.create_all(self._engine)
        logger.info("store opened", extra={"database": self._engine.url.render_as_string(hide_password=True)})
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("store closed")
        self._engine = None

    def session(self) -> Session:
        # rows handed back to callers stay readable after commit
        return Session(self.engine, expire_on_commit=False)

    def lock_for_write(self, session: Session) -> None:
        """Bind ``session`` to a connection whose transaction holds the write lock.

        Must be called before the session runs its first statement. Only
        SQLite acts on it; other backends lock rows with ``FOR UPDATE``.
        """
        session.connection(execution_options=WRITE_LOCK)

    def _connect_args(self) -> dict:
        if self.is_sqlite:
            return {"check_same_thread": False, "timeout": self.busy_timeout}
        if self.database_url.startswith("postgresql"):
            return {"options": f"-c lock_timeout={int(self.busy_timeout * 1000)}"}
        return {}


def _serialize_sqlite_writers(engine: Engine) -> None:
    if event.contains(engine, "begin", _begin):
        return
    event.listen(engine, "connect", _take_over_transactions)
    event.listen(engine, "begin", _begin)
    # the first pooled connection may predate the listener (StaticPool)
    with engine.connect() as conn:
        _take_over_transactions(conn.connection.dbapi_connection, None)


def _take_over_transactions(dbapi_connection, connection_record) -> None:
    # pysqlite must not emit its own BEGIN; ours is issued on "begin"
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin(conn) -> None:
    # readers take no lock up front; writers ask for IMMEDIATE through WRITE_LOCK
    mode = conn.get_execution_options().get(SQLITE_BEGIN, "DEFERRED")
    conn.exec_driver_sql(f"BEGIN {mode}")


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_session(request: Request):
    session = get_store(request).session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
