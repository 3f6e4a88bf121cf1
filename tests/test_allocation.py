from datetime import date

import pytest

from lab_ledger.errors import InsufficientStockError, InvalidInputError, NotFoundError, UnauthorizedError
from lab_ledger.models import Allocation, HistoryEntry
from lab_ledger.services.allocation import AllocationService
from lab_ledger.services.inventory import InventoryService
from lab_ledger.services.issuance import IssuanceService


@pytest.fixture
def allocations(coordinator):
    return AllocationService(coordinator)


@pytest.fixture
def inventory(coordinator):
    return InventoryService(coordinator)


def test_allocate_and_deallocate(allocations, inventory, admin, make_item, quantity_of, count_rows):
    item_id = make_item("Oscilloscope", 5)
    project = inventory.create_project(admin, "Project X")

    allocation = allocations.allocate(item_id, 2, admin, project_id=project.id)
    assert allocation.allocated_quantity == 2
    assert quantity_of(item_id) == 3
    assert count_rows(Allocation) == 1

    allocations.deallocate(allocation.id, admin)
    assert quantity_of(item_id) == 5
    assert count_rows(Allocation) == 0
    assert count_rows(HistoryEntry, HistoryEntry.action == "ALLOCATE_RESOURCE") == 1
    assert count_rows(HistoryEntry, HistoryEntry.action == "ALLOCATE_RESOURCE_REVOKE") == 1


def test_deallocate_restores_additively(allocations, inventory, admin, coordinator, make_item, quantity_of):
    item_id = make_item("Multimeter", 5)
    project = inventory.create_project(admin, "Project X")
    allocation = allocations.allocate(item_id, 2, admin, project_id=project.id)

    IssuanceService(coordinator).issue(item_id, 3, admin)
    assert quantity_of(item_id) == 0

    allocations.deallocate(allocation.id, admin)
    assert quantity_of(item_id) == 2


def test_competition_allocation(allocations, inventory, admin, make_item, quantity_of, count_rows):
    item_id = make_item("Robot kit", 4)
    competition = inventory.create_competition(
        admin, "RoboCup", location="Hall B", start_date=date(2026, 11, 1), end_date=date(2026, 11, 3)
    )

    allocation = allocations.allocate(item_id, 4, admin, competition_id=competition.id)
    assert allocation.competition_id == competition.id
    assert allocation.project_id is None
    assert quantity_of(item_id) == 0
    assert count_rows(HistoryEntry, HistoryEntry.action == "ADD_COMPETITION_RESOURCE") == 1


def test_allocate_over_stock_changes_nothing(allocations, inventory, admin, make_item, quantity_of, count_rows):
    item_id = make_item("Oscilloscope", 1)
    project = inventory.create_project(admin, "Project X")
    history_before = count_rows(HistoryEntry)

    with pytest.raises(InsufficientStockError):
        allocations.allocate(item_id, 2, admin, project_id=project.id)
    assert quantity_of(item_id) == 1
    assert count_rows(Allocation) == 0
    assert count_rows(HistoryEntry) == history_before


def test_allocation_target_rules(allocations, inventory, admin, make_item):
    item_id = make_item("Oscilloscope", 5)
    project = inventory.create_project(admin, "Project X")
    competition = inventory.create_competition(admin, "RoboCup")

    with pytest.raises(InvalidInputError):
        allocations.allocate(item_id, 1, admin)
    with pytest.raises(InvalidInputError):
        allocations.allocate(item_id, 1, admin, project_id=project.id, competition_id=competition.id)
    with pytest.raises(NotFoundError):
        allocations.allocate(item_id, 1, admin, project_id=999)
    with pytest.raises(InvalidInputError):
        allocations.allocate(item_id, 0, admin, project_id=project.id)


def test_allocation_is_admin_only(allocations, inventory, admin, member, make_item):
    item_id = make_item("Oscilloscope", 5)
    project = inventory.create_project(admin, "Project X")
    allocation = allocations.allocate(item_id, 1, admin, project_id=project.id)

    with pytest.raises(UnauthorizedError):
        allocations.allocate(item_id, 1, member, project_id=project.id)
    with pytest.raises(UnauthorizedError):
        allocations.deallocate(allocation.id, member)
    with pytest.raises(NotFoundError):
        allocations.deallocate(999, admin)


def test_competition_dates_are_checked(inventory, admin):
    with pytest.raises(InvalidInputError):
        inventory.create_competition(admin, "Backwards", start_date=date(2026, 5, 2), end_date=date(2026, 5, 1))
