import logging
from typing import Optional

from sqlmodel import Session

from lab_ledger.actor import Actor, ensure_admin
from lab_ledger.errors import InvalidInputError, NotFoundError
from lab_ledger.models import Allocation, Competition, Project
from lab_ledger.services.audit import AuditAction, AuditLogger
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.stock_guard import StockGuard, positive_quantity

logger = logging.getLogger(__name__)


class AllocationService:
    """
    Standing assignments of item stock to a project or a competition.

    Allocating takes the quantity out of the item; deallocating adds the
    allocated quantity back onto whatever the item holds at that moment and
    deletes the allocation, both in one transaction.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[StockGuard] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._coordinator = coordinator
        self._guard = guard or StockGuard()
        self._audit = audit or AuditLogger()

    def allocate(
        self,
        item_id: int,
        quantity: int,
        actor: Actor,
        project_id: Optional[int] = None,
        competition_id: Optional[int] = None,
    ) -> Allocation:
        ensure_admin(actor, "allocate stock")
        positive_quantity(quantity, "allocated_quantity")
        if (project_id is None) == (competition_id is None):
            raise InvalidInputError("Exactly one of project_id or competition_id is required")

        def unit(session: Session) -> Allocation:
            if project_id is not None:
                if session.get(Project, project_id) is None:
                    raise NotFoundError("Project", project_id)
                action = AuditAction.ALLOCATE_RESOURCE
                target = f"Project {project_id}"
            else:
                if session.get(Competition, competition_id) is None:
                    raise NotFoundError("Competition", competition_id)
                action = AuditAction.ADD_COMPETITION_RESOURCE
                target = f"Competition {competition_id}"

            item, old_qty = self._guard.apply(session, item_id, -quantity)

            allocation = Allocation(
                item_id=item.id,
                project_id=project_id,
                competition_id=competition_id,
                allocated_quantity=quantity,
            )
            session.add(allocation)
            session.flush()

            self._audit.record(
                session,
                actor,
                action,
                f"Allocated quantity {quantity} of Item {item.id} to {target} ({old_qty}->{item.quantity})",
            )
            return allocation

        allocation = self._coordinator.run(unit, label=f"allocate item {item_id}")
        logger.info(
            "stock allocated",
            extra={"allocation_id": allocation.id, "item_id": item_id, "quantity": quantity},
        )
        return allocation

    def deallocate(self, allocation_id: int, actor: Actor) -> Allocation:
        ensure_admin(actor, "revoke allocations")

        def unit(session: Session) -> Allocation:
            allocation = session.get(Allocation, allocation_id, with_for_update=True)
            if allocation is None:
                raise NotFoundError("Allocation", allocation_id)

            item, old_qty = self._guard.apply(session, allocation.item_id, allocation.allocated_quantity)
            session.delete(allocation)
            session.flush()

            self._audit.record(
                session,
                actor,
                AuditAction.ALLOCATE_RESOURCE_REVOKE,
                f"Revoked allocation {allocation_id} and restored stock for Item {item.id} ({old_qty}->{item.quantity})",
            )
            return allocation

        allocation = self._coordinator.run(unit, label=f"deallocate {allocation_id}")
        logger.info(
            "allocation revoked",
            extra={"allocation_id": allocation_id, "item_id": allocation.item_id},
        )
        return allocation
