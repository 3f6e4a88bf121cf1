"""
Typed errors raised by the ledger workflows.

Every error carries a machine readable ``code`` and the HTTP status the API
answers with, so routers never have to translate them by hand:

    LedgerError
    +-- NotFoundError           NOT_FOUND           404
    +-- InvalidInputError       INVALID_INPUT       400
    +-- InsufficientStockError  INSUFFICIENT_STOCK  409
    +-- InvalidStateError       INVALID_STATE       409
    |   +-- AlreadyClosedError  ALREADY_CLOSED      409
    +-- UnauthorizedError       FORBIDDEN           403
    +-- StoreFailure            STORE_FAILURE       503 (retryable) / 500
"""
from fastapi import HTTPException


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidInputError(LedgerError):
    code = "INVALID_INPUT"
    status_code = 400


class InsufficientStockError(LedgerError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, item_id: int, available: int, requested: int):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for item {item_id}: available {available}, requested {requested}")


class InvalidStateError(LedgerError):
    code = "INVALID_STATE"
    status_code = 409


class AlreadyClosedError(InvalidStateError):
    code = "ALREADY_CLOSED"

    def __init__(self, borrowing_id: int):
        self.borrowing_id = borrowing_id
        super().__init__(f"Borrowing {borrowing_id} already closed")


class UnauthorizedError(LedgerError):
    code = "FORBIDDEN"
    status_code = 403


class StoreFailure(LedgerError):
    code = "STORE_FAILURE"

    def __init__(self, message: str, *, retryable: bool):
        self.retryable = retryable
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return 503 if self.retryable else 500

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


def _auth_401(code: str, message: str) -> HTTPException:
    # keep WWW-Authenticate so bearer clients know to re-login
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )
