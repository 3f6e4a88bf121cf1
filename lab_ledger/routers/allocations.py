from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from lab_ledger.actor import Actor
from lab_ledger.db import get_session
from lab_ledger.deps import get_allocations, get_inventory, require_admin, require_user
from lab_ledger.errors import NotFoundError
from lab_ledger.models import Allocation, Competition, HistoryEntry, Project
from lab_ledger.schemas import (
    AllocationCreate,
    AllocationRead,
    CompetitionCreate,
    CompetitionItemCreate,
    CompetitionRead,
    HistoryRead,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
)
from lab_ledger.services.allocation import AllocationService
from lab_ledger.services.inventory import InventoryService

router = APIRouter(tags=["allocations"])


@router.get("/projects", response_model=list[ProjectRead])
def list_projects(session: Session = Depends(get_session), _actor: Actor = Depends(require_user)):
    return session.exec(select(Project).order_by(Project.created_at.desc(), Project.id.desc())).all()


@router.post("/projects", response_model=ProjectRead, status_code=201)
def create_project(
    data: ProjectCreate,
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory),
):
    return inventory.create_project(actor, data.name, data.description)


@router.put("/projects/{project_id}", response_model=ProjectRead)
def update_project(
    project_id: int,
    data: ProjectUpdate,
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory),
):
    return inventory.update_project(project_id, actor, **data.model_dump(exclude_unset=True))


@router.get("/competitions", response_model=list[CompetitionRead])
def list_competitions(session: Session = Depends(get_session), _actor: Actor = Depends(require_user)):
    stmt = select(Competition).order_by(Competition.start_date.desc(), Competition.id.desc())
    return session.exec(stmt).all()


@router.post("/competitions", response_model=CompetitionRead, status_code=201)
def create_competition(
    data: CompetitionCreate,
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory),
):
    return inventory.create_competition(actor, **data.model_dump())


@router.get("/competitions/{competition_id}/items", response_model=list[AllocationRead])
def list_competition_items(
    competition_id: int,
    session: Session = Depends(get_session),
    _actor: Actor = Depends(require_user),
):
    if session.get(Competition, competition_id) is None:
        raise NotFoundError("Competition", competition_id)
    stmt = select(Allocation).where(Allocation.competition_id == competition_id).order_by(Allocation.id)
    return session.exec(stmt).all()


@router.post("/competitions/{competition_id}/items", response_model=AllocationRead, status_code=201)
def add_competition_item(
    competition_id: int,
    data: CompetitionItemCreate,
    actor: Actor = Depends(require_admin),
    allocations: AllocationService = Depends(get_allocations),
):
    return allocations.allocate(data.item_id, data.quantity, actor, competition_id=competition_id)


@router.get("/allocations", response_model=list[AllocationRead])
def list_allocations(
    item_id: Optional[int] = Query(None, ge=1),
    project_id: Optional[int] = Query(None, ge=1),
    session: Session = Depends(get_session),
    _actor: Actor = Depends(require_user),
):
    stmt = select(Allocation)
    if item_id is not None:
        stmt = stmt.where(Allocation.item_id == item_id)
    if project_id is not None:
        stmt = stmt.where(Allocation.project_id == project_id)
    return session.exec(stmt.order_by(Allocation.id.desc())).all()


@router.post("/allocations", response_model=AllocationRead, status_code=201)
def allocate(
    data: AllocationCreate,
    actor: Actor = Depends(require_admin),
    allocations: AllocationService = Depends(get_allocations),
):
    return allocations.allocate(
        data.item_id,
        data.allocated_quantity,
        actor,
        project_id=data.project_id,
        competition_id=data.competition_id,
    )


@router.delete("/allocations/{allocation_id}")
def deallocate(
    allocation_id: int,
    actor: Actor = Depends(require_admin),
    allocations: AllocationService = Depends(get_allocations),
):
    allocation = allocations.deallocate(allocation_id, actor)
    return {
        "message": "Allocation removed and stock restored.",
        "item_id": allocation.item_id,
        "restored_quantity": allocation.allocated_quantity,
    }


@router.get("/history", response_model=list[HistoryRead], tags=["history"])
def list_history(
    action: Optional[str] = Query(None, max_length=50),
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(get_session),
    _actor: Actor = Depends(require_admin),
):
    stmt = select(HistoryEntry)
    if action:
        stmt = stmt.where(HistoryEntry.action == action.strip().upper())
    return session.exec(stmt.order_by(HistoryEntry.timestamp.desc(), HistoryEntry.id.desc()).limit(limit)).all()
