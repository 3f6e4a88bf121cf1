from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field
from datetime import date, datetime

from lab_ledger.models import Direction, ProjectStatus, RequestStatus


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)
    full_name: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ItemCreate(BaseModel):
    name: str
    cabinet: str = "unknown"
    quantity: int = Field(0, ge=0)
    description: Optional[str] = None
    location_x: Optional[float] = None
    location_y: Optional[float] = None


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    cabinet: Optional[str] = None
    description: Optional[str] = None
    location_x: Optional[float] = None
    location_y: Optional[float] = None
    quantity: Optional[int] = Field(None, ge=0, description="New stock level; the difference goes through the stock guard")


class ItemRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    cabinet: str
    quantity: int
    location_x: Optional[float] = None
    location_y: Optional[float] = None
    updated_at: datetime


class ItemListResponse(BaseModel):
    items: list[ItemRead]
    total: int
    limit: int
    offset: int
    q: str | None = None


class StockMove(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1, le=100000)
    user_id: Optional[int] = Field(None, description="Recipient; defaults to the caller")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"item_id": 1, "quantity": 3},
                {"item_id": 1, "quantity": 1, "user_id": 7},
            ]
        }
    }


class TransactionRead(BaseModel):
    id: int
    item_id: int
    user_id: int
    direction: Direction
    quantity: int
    delta: int
    created_at: datetime


class TransactionSort(str, Enum):
    id_desc = "id_desc"
    id_asc = "id_asc"
    created_desc = "created_desc"
    created_asc = "created_asc"


class TransactionListResponse(BaseModel):
    items: list[TransactionRead]
    total: int
    limit: int
    offset: int


class RequestCreate(BaseModel):
    title: str
    tool_name: str
    quantity: int = Field(1, ge=1)
    reason: Optional[str] = None
    expected_return_date: Optional[date] = None


class RequestResolve(BaseModel):
    reason: Optional[str] = None


class RequestRead(BaseModel):
    id: int
    user_id: int
    title: str
    tool_name: str
    quantity: int
    reason: Optional[str] = None
    expected_return_date: Optional[date] = None
    status: RequestStatus
    requested_at: datetime
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    resolution_reason: Optional[str] = None


class BorrowingCreate(BaseModel):
    user_id: Optional[int] = None
    item_id: Optional[int] = None
    tool_name: Optional[str] = None
    quantity: int = Field(1, ge=1)
    expected_return_date: Optional[date] = None
    notes: Optional[str] = None


class BorrowingClose(BaseModel):
    notes: Optional[str] = None


class BorrowingRead(BaseModel):
    id: int
    user_id: int
    request_id: Optional[int] = None
    item_id: Optional[int] = None
    tool_name: str
    quantity: int
    borrowed_at: datetime
    expected_return_date: Optional[date] = None
    returned_at: Optional[datetime] = None
    notes: Optional[str] = None


class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None


class ProjectRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: str
    created_at: datetime


class CompetitionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CompetitionRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime


class AllocationCreate(BaseModel):
    item_id: int
    allocated_quantity: int = Field(..., ge=1)
    project_id: Optional[int] = None
    competition_id: Optional[int] = None


class CompetitionItemCreate(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)


class AllocationRead(BaseModel):
    id: int
    item_id: int
    project_id: Optional[int] = None
    competition_id: Optional[int] = None
    allocated_quantity: int
    created_at: datetime


class HistoryRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    username: Optional[str] = None
    action: str
    details: Optional[str] = None
    timestamp: datetime
