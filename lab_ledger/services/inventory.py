import logging
from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from lab_ledger.actor import Actor, ensure_admin
from lab_ledger.errors import InvalidInputError, InvalidStateError, NotFoundError
from lab_ledger.models import (
    Allocation,
    Borrowing,
    Competition,
    Direction,
    Item,
    Project,
    ProjectStatus,
    Transaction,
    utcnow,
)
from lab_ledger.services.audit import AuditAction, AuditLogger
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.stock_guard import StockGuard

logger = logging.getLogger(__name__)

ITEM_FIELDS = ("name", "description", "cabinet", "location_x", "location_y")


def _required(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidInputError(f"{field} must not be empty")
    return value


def _record_adjustment(session: Session, item_id: int, actor: Actor, delta: int) -> Transaction:
    tx = Transaction(
        item_id=item_id,
        user_id=actor.id,
        direction=Direction.ADJUST.value,
        quantity=abs(delta),
        delta=delta,
    )
    session.add(tx)
    session.flush()
    return tx


class InventoryService:
    """Item catalogue plus the projects and competitions stock is allocated to."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        guard: Optional[StockGuard] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._coordinator = coordinator
        self._guard = guard or StockGuard()
        self._audit = audit or AuditLogger()

    def create_item(
        self,
        actor: Actor,
        name: str,
        cabinet: str,
        quantity: int = 0,
        description: Optional[str] = None,
        location_x: Optional[float] = None,
        location_y: Optional[float] = None,
    ) -> Item:
        ensure_admin(actor, "create items")
        name, cabinet = _required(name, "name"), _required(cabinet, "cabinet")
        if quantity < 0:
            raise InvalidInputError("quantity must be >= 0")

        def unit(session: Session) -> Item:
            item = Item(
                name=name,
                cabinet=cabinet,
                quantity=quantity,
                description=(description or "").strip() or None,
                location_x=location_x,
                location_y=location_y,
            )
            session.add(item)
            session.flush()  # assigns item.id
            if quantity > 0:
                _record_adjustment(session, item.id, actor, quantity)
            self._audit.record(
                session, actor, AuditAction.ITEM_CREATED, f"Created item {item.id} ({name}, qty {quantity})"
            )
            return item

        return self._coordinator.run(unit, label="create item")

    def update_item(self, item_id: int, actor: Actor, quantity: Optional[int] = None, **fields) -> Item:
        """Update descriptive fields and, optionally, set a new stock level.

        A new ``quantity`` is a target, not a delta: the difference to the
        current stock is pushed through the stock guard in the same unit and
        recorded as an ``adjust`` transaction.
        """
        ensure_admin(actor, "update items")
        unknown = set(fields) - set(ITEM_FIELDS)
        if unknown:
            raise InvalidInputError(f"Unknown item fields: {', '.join(sorted(unknown))}")
        for key in ("name", "cabinet"):
            if key in fields:
                fields[key] = _required(fields[key], key)
        if quantity is not None and quantity < 0:
            raise InvalidInputError("quantity must be >= 0")

        def unit(session: Session) -> Item:
            item = self._guard.load(session, item_id)
            changes = []
            if quantity is not None and quantity != item.quantity:
                delta = quantity - item.quantity
                item, old_qty = self._guard.apply(session, item_id, delta)
                _record_adjustment(session, item_id, actor, delta)
                changes.append(f"quantity {old_qty}->{item.quantity}")

            for key, value in fields.items():
                if getattr(item, key) != value:
                    setattr(item, key, value)
                    changes.append(key)

            item.updated_at = utcnow()
            session.add(item)
            session.flush()
            summary = ", ".join(changes) if changes else "no changes"
            self._audit.record(session, actor, AuditAction.ITEM_UPDATED, f"Updated item {item_id}: {summary}")
            return item

        return self._coordinator.run(unit, label=f"update item {item_id}")

    def delete_item(self, item_id: int, actor: Actor) -> None:
        ensure_admin(actor, "delete items")

        def unit(session: Session) -> None:
            item = self._guard.load(session, item_id)
            for model, label in ((Transaction, "transactions"), (Allocation, "allocations"), (Borrowing, "borrowings")):
                count = session.exec(select(func.count()).select_from(model).where(model.item_id == item_id)).one()
                if count:
                    raise InvalidStateError(f"Item {item_id} still has {count} {label} and cannot be deleted")
            session.delete(item)
            session.flush()
            self._audit.record(session, actor, AuditAction.ITEM_DELETED, f"Deleted item {item_id}")

        self._coordinator.run(unit, label=f"delete item {item_id}")
        logger.info("item deleted", extra={"item_id": item_id, "actor": actor.username})

    def create_project(self, actor: Actor, name: str, description: Optional[str] = None) -> Project:
        ensure_admin(actor, "create projects")
        name = _required(name, "name")

        def unit(session: Session) -> Project:
            project = Project(name=name, description=(description or "").strip() or None)
            session.add(project)
            session.flush()
            self._audit.record(session, actor, AuditAction.CREATE_PROJECT, f"Created project: {name}")
            return project

        return self._coordinator.run(unit, label="create project")

    def update_project(
        self,
        project_id: int,
        actor: Actor,
        name: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[ProjectStatus] = None,
    ) -> Project:
        ensure_admin(actor, "update projects")
        if name is None and description is None and status is None:
            raise InvalidInputError("No fields to update")
        if name is not None:
            name = _required(name, "name")
        if status is not None:
            try:
                status = ProjectStatus(status)
            except ValueError:
                raise InvalidInputError(f"Unknown project status: {status}")

        def unit(session: Session) -> Project:
            project = session.get(Project, project_id, with_for_update=True)
            if project is None:
                raise NotFoundError("Project", project_id)
            if name is not None:
                project.name = name
            if description is not None:
                project.description = description.strip() or None
            if status is not None:
                project.status = status.value
            session.add(project)
            session.flush()
            self._audit.record(
                session, actor, AuditAction.UPDATE_PROJECT, f"Updated project {project_id} ({project.status})"
            )
            return project

        return self._coordinator.run(unit, label=f"update project {project_id}")

    def create_competition(
        self,
        actor: Actor,
        name: str,
        description: Optional[str] = None,
        location: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Competition:
        ensure_admin(actor, "create competitions")
        name = _required(name, "name")
        if start_date and end_date and end_date < start_date:
            raise InvalidInputError("end_date must not be before start_date")

        def unit(session: Session) -> Competition:
            competition = Competition(
                name=name,
                description=description,
                location=location,
                start_date=start_date,
                end_date=end_date,
            )
            session.add(competition)
            session.flush()
            self._audit.record(
                session, actor, AuditAction.COMPETITION_CREATED, f"Created competition {competition.id}"
            )
            return competition

        return self._coordinator.run(unit, label="create competition")
