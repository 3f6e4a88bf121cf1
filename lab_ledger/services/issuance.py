import logging
from typing import Optional

from sqlmodel import Session

from lab_ledger.actor import Actor, ensure_admin
from lab_ledger.errors import NotFoundError
from lab_ledger.models import Direction, Transaction, User
from lab_ledger.services.audit import AuditAction, AuditLogger
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.stock_guard import StockGuard, positive_quantity

logger = logging.getLogger(__name__)


class IssuanceService:
    """Direct issue and return of stock, outside the request workflow."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[StockGuard] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._coordinator = coordinator
        self._guard = guard or StockGuard()
        self._audit = audit or AuditLogger()

    def issue(self, item_id: int, quantity: int, actor: Actor, user_id: Optional[int] = None) -> Transaction:
        ensure_admin(actor, "issue stock")
        positive_quantity(quantity)
        return self._move(Direction.ISSUE, item_id, quantity, actor, user_id or actor.id)

    def return_stock(
        self, item_id: int, quantity: int, actor: Actor, user_id: Optional[int] = None
    ) -> Transaction:
        ensure_admin(actor, "return stock")
        positive_quantity(quantity)
        return self._move(Direction.RETURN, item_id, quantity, actor, user_id or actor.id)

    def _move(self, direction: Direction, item_id: int, quantity: int, actor: Actor, user_id: int) -> Transaction:
        delta = -quantity if direction == Direction.ISSUE else quantity

        def unit(session: Session) -> Transaction:
            if session.get(User, user_id) is None:
                raise NotFoundError("User", user_id)

            item, old_qty = self._guard.apply(session, item_id, delta)

            tx = Transaction(
                item_id=item.id, user_id=user_id, direction=direction.value, quantity=quantity, delta=delta
            )
            session.add(tx)
            session.flush()

            if direction == Direction.ISSUE:
                action = AuditAction.ITEM_ISSUED
                details = f"Issued item {item.id} (qty {quantity}) to user {user_id} ({old_qty}->{item.quantity})"
            else:
                action = AuditAction.RETURN_ITEM
                details = f"Returned item {item.id} (qty {quantity}) from user {user_id} ({old_qty}->{item.quantity})"
            self._audit.record(session, actor, action, details)
            return tx

        tx = self._coordinator.run(unit, label=f"{direction.value} item {item_id}")
        logger.info(
            "stock %s",
            direction.value,
            extra={"item_id": item_id, "quantity": quantity, "user_id": user_id, "actor": actor.username},
        )
        return tx
