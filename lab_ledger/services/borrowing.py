"""
Request-to-borrowing workflow.

Requests move ``pending -> approved | rejected | cancelled`` and never leave a
terminal state. Approval turns the request into a borrowing in the same
transaction. Requests name a free-text tool, not an inventory item, so an
approved request does not draw on tracked stock; direct borrowings made
against an ``item_id`` do, and give the stock back when closed.

Both paths go through ``create_borrowing`` so a borrowing is built the same
way wherever it comes from.
"""
import logging
from datetime import date
from typing import Optional

from sqlmodel import Session, select

from lab_ledger.actor import Actor, ensure_admin
from lab_ledger.errors import (
    AlreadyClosedError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from lab_ledger.models import Borrowing, RequestStatus, ToolRequest, User, utcnow
from lab_ledger.services.audit import AuditAction, AuditLogger
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.stock_guard import StockGuard, positive_quantity

logger = logging.getLogger(__name__)


def _clean(text: Optional[str]) -> Optional[str]:
    text = (text or "").strip()
    return text or None


def create_borrowing(
    session: Session,
    guard: StockGuard,
    *,
    user_id: int,
    quantity: int,
    tool_name: Optional[str] = None,
    item_id: Optional[int] = None,
    request_id: Optional[int] = None,
    expected_return_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> Borrowing:
    """Insert a borrowing inside the caller's unit of work.

    With ``item_id`` the quantity is taken out of the item's stock first and
    the tool name comes from the item.
    """
    if item_id is not None:
        item, _ = guard.apply(session, item_id, -quantity)
        tool_name = tool_name or item.name

    if not tool_name:
        raise InvalidInputError("tool_name is required for an untracked borrowing")

    borrowing = Borrowing(
        user_id=user_id,
        request_id=request_id,
        item_id=item_id,
        tool_name=tool_name,
        quantity=quantity,
        expected_return_date=expected_return_date,
        notes=notes,
    )
    session.add(borrowing)
    session.flush()
    return borrowing


class RequestService:
    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[StockGuard] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._coordinator = coordinator
        self._guard = guard or StockGuard()
        self._audit = audit or AuditLogger()

    def submit(
        self,
        actor: Actor,
        title: str,
        tool_name: str,
        quantity: int = 1,
        reason: Optional[str] = None,
        expected_return_date: Optional[date] = None,
    ) -> ToolRequest:
        title, tool_name = _clean(title), _clean(tool_name)
        if not title or not tool_name:
            raise InvalidInputError("title and tool_name are required")
        positive_quantity(quantity)

        def unit(session: Session) -> ToolRequest:
            request = ToolRequest(
                user_id=actor.id,
                title=title,
                tool_name=tool_name,
                quantity=quantity,
                reason=_clean(reason),
                expected_return_date=expected_return_date,
            )
            session.add(request)
            session.flush()
            self._audit.record(
                session, actor, AuditAction.REQUEST_SUBMITTED, f"Request {request.id} for {tool_name}"
            )
            return request

        return self._coordinator.run(unit, label="submit request")

    def approve(self, request_id: int, actor: Actor) -> ToolRequest:
        ensure_admin(actor, "approve requests")

        def unit(session: Session) -> ToolRequest:
            request = self._load_pending(session, request_id, "approved")
            request.status = RequestStatus.APPROVED.value
            request.resolved_by = actor.id
            request.resolved_at = utcnow()
            request.resolution_reason = None
            session.add(request)

            borrowing = create_borrowing(
                session,
                self._guard,
                user_id=request.user_id,
                request_id=request.id,
                tool_name=request.tool_name,
                quantity=request.quantity,
                expected_return_date=request.expected_return_date,
                notes=request.reason,
            )
            self._audit.record(
                session,
                actor,
                AuditAction.REQUEST_APPROVED,
                f"Approved request {request.id} as borrowing {borrowing.id}",
            )
            return request

        request = self._coordinator.run(unit, label=f"approve request {request_id}")
        logger.info("request approved", extra={"request_id": request_id, "actor": actor.username})
        return request

    def reject(self, request_id: int, actor: Actor, reason: Optional[str] = None) -> ToolRequest:
        ensure_admin(actor, "reject requests")
        return self._resolve(request_id, actor, RequestStatus.REJECTED, reason, AuditAction.REQUEST_REJECTED)

    def cancel(self, request_id: int, actor: Actor, reason: Optional[str] = None) -> ToolRequest:
        # ownership needs the row, so it is checked inside the unit before any write
        def authorize(request: ToolRequest) -> None:
            if request.user_id != actor.id and not actor.is_admin:
                raise UnauthorizedError("You can only cancel your own requests")

        return self._resolve(
            request_id, actor, RequestStatus.CANCELLED, reason, AuditAction.REQUEST_CANCELLED, authorize
        )

    def _resolve(self, request_id, actor, status, reason, action, authorize=None) -> ToolRequest:
        verb = status.value

        def unit(session: Session) -> ToolRequest:
            request = self._load(session, request_id)
            if authorize is not None:
                authorize(request)
            self._ensure_pending(request, verb)

            request.status = status.value
            request.resolved_by = actor.id
            request.resolved_at = utcnow()
            request.resolution_reason = _clean(reason)
            session.add(request)
            session.flush()

            self._audit.record(session, actor, action, f"{verb.capitalize()} request {request.id}")
            return request

        return self._coordinator.run(unit, label=f"{verb} request {request_id}")

    def _load(self, session: Session, request_id: int) -> ToolRequest:
        request = session.exec(
            select(ToolRequest)
            .where(ToolRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if request is None:
            raise NotFoundError("Request", request_id)
        return request

    def _load_pending(self, session: Session, request_id: int, verb: str) -> ToolRequest:
        request = self._load(session, request_id)
        self._ensure_pending(request, verb)
        return request

    @staticmethod
    def _ensure_pending(request: ToolRequest, verb: str) -> None:
        if request.status != RequestStatus.PENDING.value:
            raise InvalidStateError(
                f"Only pending requests can be {verb}; request {request.id} is {request.status}"
            )


class BorrowingService:
    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[StockGuard] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._coordinator = coordinator
        self._guard = guard or StockGuard()
        self._audit = audit or AuditLogger()

    def borrow(
        self,
        actor: Actor,
        quantity: int = 1,
        user_id: Optional[int] = None,
        item_id: Optional[int] = None,
        tool_name: Optional[str] = None,
        expected_return_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Borrowing:
        borrower_id = user_id or actor.id
        if borrower_id != actor.id and not actor.is_admin:
            raise UnauthorizedError("Members can only borrow for themselves")
        positive_quantity(quantity)
        tool_name = _clean(tool_name)
        if item_id is None and tool_name is None:
            raise InvalidInputError("Either item_id or tool_name is required")

        def unit(session: Session) -> Borrowing:
            if session.get(User, borrower_id) is None:
                raise NotFoundError("User", borrower_id)
            borrowing = create_borrowing(
                session,
                self._guard,
                user_id=borrower_id,
                item_id=item_id,
                tool_name=tool_name,
                quantity=quantity,
                expected_return_date=expected_return_date,
                notes=_clean(notes),
            )
            details = f"Created borrowing {borrowing.id} for user {borrower_id}"
            if item_id is not None:
                details += f" (item {item_id}, qty {quantity})"
            self._audit.record(session, actor, AuditAction.BORROWING_CREATED, details)
            return borrowing

        borrowing = self._coordinator.run(unit, label="create borrowing")
        logger.info(
            "borrowing created",
            extra={"borrowing_id": borrowing.id, "item_id": item_id, "quantity": quantity},
        )
        return borrowing

    def close_borrowing(self, borrowing_id: int, actor: Actor, notes: Optional[str] = None) -> Borrowing:
        def unit(session: Session) -> Borrowing:
            borrowing = session.exec(
                select(Borrowing)
                .where(Borrowing.id == borrowing_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if borrowing is None:
                raise NotFoundError("Borrowing", borrowing_id)
            if borrowing.user_id != actor.id and not actor.is_admin:
                raise UnauthorizedError("You can only close your own borrowings")
            if borrowing.returned_at is not None:
                raise AlreadyClosedError(borrowing.id)

            if borrowing.item_id is not None:
                self._guard.apply(session, borrowing.item_id, borrowing.quantity)

            borrowing.returned_at = utcnow()
            borrowing.notes = _clean(notes) or borrowing.notes
            session.add(borrowing)
            session.flush()

            self._audit.record(
                session, actor, AuditAction.BORROWING_RETURNED, f"Marked borrowing {borrowing.id} as returned"
            )
            return borrowing

        borrowing = self._coordinator.run(unit, label=f"close borrowing {borrowing_id}")
        logger.info("borrowing closed", extra={"borrowing_id": borrowing_id, "actor": actor.username})
        return borrowing
