from typing import Optional
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class Direction(str, Enum):
    ISSUE = "issue"
    RETURN = "return"
    ADJUST = "adjust"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    role: str = Field(default=Role.MEMBER.value, index=True)
    full_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Item(SQLModel, table=True):
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_item_quantity_non_negative"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    cabinet: str = Field(default="unknown")
    quantity: int = Field(default=0)
    # position on the lab map
    location_x: Optional[float] = None
    location_y: Optional[float] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transaction_quantity_positive"),
        CheckConstraint("quantity = abs(delta)", name="ck_transaction_delta_matches"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(foreign_key="item.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    direction: str = Field(index=True)  # issue / return / adjust
    quantity: int
    # signed change to the item; an adjust carries either sign
    delta: int
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)


class ToolRequest(SQLModel, table=True):
    __tablename__ = "requests"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_request_quantity_positive"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    title: str
    tool_name: str
    quantity: int = Field(default=1)
    reason: Optional[str] = None
    expected_return_date: Optional[date] = None
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    requested_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)

    resolved_by: Optional[int] = Field(default=None, foreign_key="user.id")
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    resolution_reason: Optional[str] = None


class Borrowing(SQLModel, table=True):
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_borrowing_quantity_positive"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    request_id: Optional[int] = Field(default=None, foreign_key="requests.id", index=True)
    # only set when the loan is drawn from tracked stock
    item_id: Optional[int] = Field(default=None, foreign_key="item.id", index=True)
    tool_name: str
    quantity: int = Field(default=1)
    borrowed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
    expected_return_date: Optional[date] = None
    returned_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    notes: Optional[str] = None


class Project(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    status: str = Field(default=ProjectStatus.PLANNING.value)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Competition(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Allocation(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("allocated_quantity > 0", name="ck_allocation_quantity_positive"),
        CheckConstraint(
            "(project_id IS NULL) <> (competition_id IS NULL)",
            name="ck_allocation_single_target",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(foreign_key="item.id", index=True)
    project_id: Optional[int] = Field(default=None, foreign_key="project.id", index=True)
    competition_id: Optional[int] = Field(default=None, foreign_key="competition.id", index=True)
    allocated_quantity: int
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class HistoryEntry(SQLModel, table=True):
    __tablename__ = "history"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, index=True)
    username: Optional[str] = None
    action: str = Field(index=True)
    details: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
