from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from lab_ledger.actor import Actor
from lab_ledger.db import get_session
from lab_ledger.deps import get_borrowings, get_requests, require_admin, require_user
from lab_ledger.models import Borrowing, RequestStatus, ToolRequest
from lab_ledger.schemas import (
    BorrowingClose,
    BorrowingCreate,
    BorrowingRead,
    RequestCreate,
    RequestRead,
    RequestResolve,
)
from lab_ledger.services.borrowing import BorrowingService, RequestService

router = APIRouter(tags=["requests"])


@router.get("/requests", response_model=list[RequestRead])
def list_requests(
    status: Optional[RequestStatus] = Query(None),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_user),
):
    stmt = select(ToolRequest)
    if status is not None:
        stmt = stmt.where(ToolRequest.status == status.value)
    # members only ever see their own requests
    if not actor.is_admin:
        stmt = stmt.where(ToolRequest.user_id == actor.id)
    return session.exec(stmt.order_by(ToolRequest.requested_at.desc(), ToolRequest.id.desc())).all()


@router.post("/requests", response_model=RequestRead, status_code=201)
def submit_request(
    data: RequestCreate,
    actor: Actor = Depends(require_user),
    requests: RequestService = Depends(get_requests),
):
    return requests.submit(actor, **data.model_dump())


@router.put("/requests/{request_id}/approve", response_model=RequestRead)
def approve_request(
    request_id: int,
    actor: Actor = Depends(require_admin),
    requests: RequestService = Depends(get_requests),
):
    return requests.approve(request_id, actor)


@router.put("/requests/{request_id}/reject", response_model=RequestRead)
def reject_request(
    request_id: int,
    body: Optional[RequestResolve] = None,
    actor: Actor = Depends(require_admin),
    requests: RequestService = Depends(get_requests),
):
    return requests.reject(request_id, actor, reason=body.reason if body else None)


@router.put("/requests/{request_id}/cancel", response_model=RequestRead)
def cancel_request(
    request_id: int,
    body: Optional[RequestResolve] = None,
    actor: Actor = Depends(require_user),
    requests: RequestService = Depends(get_requests),
):
    return requests.cancel(request_id, actor, reason=body.reason if body else None)


@router.get("/borrowings", response_model=list[BorrowingRead])
def list_borrowings(
    open_only: bool = Query(False, description="Only borrowings not yet returned"),
    session: Session = Depends(get_session),
    actor: Actor = Depends(require_user),
):
    stmt = select(Borrowing)
    if open_only:
        stmt = stmt.where(Borrowing.returned_at.is_(None))
    if not actor.is_admin:
        stmt = stmt.where(Borrowing.user_id == actor.id)
    return session.exec(stmt.order_by(Borrowing.borrowed_at.desc(), Borrowing.id.desc())).all()


@router.post("/borrowings", response_model=BorrowingRead, status_code=201)
def create_borrowing(
    data: BorrowingCreate,
    actor: Actor = Depends(require_user),
    borrowings: BorrowingService = Depends(get_borrowings),
):
    return borrowings.borrow(actor, **data.model_dump())


@router.put("/borrowings/{borrowing_id}/return", response_model=BorrowingRead)
def close_borrowing(
    borrowing_id: int,
    body: Optional[BorrowingClose] = None,
    actor: Actor = Depends(require_user),
    borrowings: BorrowingService = Depends(get_borrowings),
):
    return borrowings.close_borrowing(borrowing_id, actor, notes=body.notes if body else None)
