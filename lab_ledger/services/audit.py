"""
Audit trail writer.

One ``HistoryEntry`` per mutating operation, added to the session of the
unit of work that performs the mutation. The entry is flushed immediately so
a failed insert surfaces inside the unit and rolls the mutation back with it.
"""
from enum import Enum
from typing import Optional

from sqlmodel import Session

from lab_ledger.actor import Actor
from lab_ledger.models import HistoryEntry


class AuditAction(str, Enum):
    ITEM_CREATED = "ITEM_CREATED"
    ITEM_UPDATED = "ITEM_UPDATED"
    ITEM_DELETED = "ITEM_DELETED"
    ITEM_ISSUED = "ITEM_ISSUED"
    RETURN_ITEM = "RETURN_ITEM"
    REQUEST_SUBMITTED = "REQUEST_SUBMITTED"
    REQUEST_APPROVED = "REQUEST_APPROVED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    BORROWING_CREATED = "BORROWING_CREATED"
    BORROWING_RETURNED = "BORROWING_RETURNED"
    ALLOCATE_RESOURCE = "ALLOCATE_RESOURCE"
    ADD_COMPETITION_RESOURCE = "ADD_COMPETITION_RESOURCE"
    ALLOCATE_RESOURCE_REVOKE = "ALLOCATE_RESOURCE_REVOKE"
    CREATE_PROJECT = "CREATE_PROJECT"
    UPDATE_PROJECT = "UPDATE_PROJECT"
    COMPETITION_CREATED = "COMPETITION_CREATED"
    REGISTER = "REGISTER"


class AuditLogger:
    def record(
        self,
        session: Session,
        actor: Optional[Actor],
        action: AuditAction,
        details: Optional[str] = None,
    ) -> HistoryEntry:
        entry = HistoryEntry(
            user_id=actor.id if actor else None,
            username=actor.username if actor else None,
            action=action.value,
            details=details,
        )
        session.add(entry)
        session.flush()
        return entry
