from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlmodel import select

from lab_ledger.actor import Actor
from lab_ledger.config import Settings
from lab_ledger.db import Store, get_store
from lab_ledger.errors import UnauthorizedError, _auth_401
from lab_ledger.models import User
from lab_ledger.security import decode_token
from lab_ledger.services.allocation import AllocationService
from lab_ledger.services.borrowing import BorrowingService, RequestService
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.inventory import InventoryService
from lab_ledger.services.issuance import IssuanceService

# auto_error=False so a missing token gets our error format, not FastAPI's
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_user(
    token: str | None = Depends(oauth2_scheme),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> Actor:
    if not token:
        raise _auth_401("NOT_AUTHENTICATED", "Not logged in or session expired, please log in again")

    try:
        username = decode_token(token, settings)
    except (JWTError, ValueError):
        raise _auth_401("INVALID_TOKEN", "Token is invalid or expired, please log in again")

    # short-lived session: the request must not hold a transaction open while a workflow runs
    with store.session() as session:
        user = session.exec(select(User).where(User.username == username)).first()
    if not user:
        raise _auth_401("USER_NOT_FOUND", "User does not exist or has been removed")

    return Actor.from_user(user)


def require_admin(actor: Actor = Depends(require_user)) -> Actor:
    if not actor.is_admin:
        raise UnauthorizedError("Access denied: admins only")
    return actor


def get_coordinator(request: Request) -> TransactionCoordinator:
    return request.app.state.coordinator


def get_issuance(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> IssuanceService:
    return IssuanceService(coordinator)


def get_requests(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> RequestService:
    return RequestService(coordinator)


def get_borrowings(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> BorrowingService:
    return BorrowingService(coordinator)


def get_allocations(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> AllocationService:
    return AllocationService(coordinator)


def get_inventory(coordinator: TransactionCoordinator = Depends(get_coordinator)) -> InventoryService:
    return InventoryService(coordinator)
