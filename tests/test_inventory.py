import pytest
from sqlmodel import select

from lab_ledger.errors import InvalidInputError, InvalidStateError, NotFoundError, UnauthorizedError
from lab_ledger.models import HistoryEntry, Transaction
from lab_ledger.services.inventory import InventoryService


@pytest.fixture
def inventory(coordinator):
    return InventoryService(coordinator)


def transactions_for(store, item_id):
    with store.session() as session:
        return session.exec(select(Transaction).where(Transaction.item_id == item_id).order_by(Transaction.id)).all()


def test_setting_quantity_records_an_adjustment(inventory, store, admin, make_item, quantity_of):
    item_id = make_item("Oscilloscope", 5)

    item = inventory.update_item(item_id, admin, quantity=1)
    assert item.quantity == 1
    assert quantity_of(item_id) == 1

    [tx] = transactions_for(store, item_id)
    assert tx.direction == "adjust"
    assert tx.quantity == 4
    assert tx.delta == -4
    assert tx.user_id == admin.id

    inventory.update_item(item_id, admin, quantity=6)
    assert [t.delta for t in transactions_for(store, item_id)] == [-4, 5]


def test_field_only_update_moves_no_stock(inventory, admin, make_item, count_rows):
    item_id = make_item("Oscilloscope", 5)
    inventory.update_item(item_id, admin, quantity=5, cabinet="C9")
    assert count_rows(Transaction) == 0
    assert count_rows(HistoryEntry, HistoryEntry.action == "ITEM_UPDATED") == 1


def test_opening_stock_is_recorded(inventory, store, admin, count_rows):
    item = inventory.create_item(admin, "Scope", "C1", quantity=3)
    [tx] = transactions_for(store, item.id)
    assert (tx.direction, tx.quantity, tx.delta) == ("adjust", 3, 3)

    empty = inventory.create_item(admin, "Spare scope", "C1")
    assert transactions_for(store, empty.id) == []
    assert count_rows(Transaction) == 1


def test_recorded_stock_keeps_an_item_from_deletion(inventory, admin):
    item = inventory.create_item(admin, "Scope", "C1", quantity=3)
    with pytest.raises(InvalidStateError):
        inventory.delete_item(item.id, admin)


def test_update_project_status(inventory, admin, count_rows):
    project = inventory.create_project(admin, "Project X")
    assert project.status == "planning"

    updated = inventory.update_project(project.id, admin, status="active")
    assert updated.status == "active"
    assert updated.name == "Project X"

    renamed = inventory.update_project(project.id, admin, name="  Project Y ", description="  ")
    assert renamed.name == "Project Y"
    assert renamed.description is None
    assert renamed.status == "active"
    assert count_rows(HistoryEntry, HistoryEntry.action == "UPDATE_PROJECT") == 2


def test_update_project_rejections(inventory, admin, member):
    project = inventory.create_project(admin, "Project X")

    with pytest.raises(InvalidInputError, match="Unknown project status"):
        inventory.update_project(project.id, admin, status="archived")
    with pytest.raises(InvalidInputError, match="No fields"):
        inventory.update_project(project.id, admin)
    with pytest.raises(NotFoundError, match="Project 404"):
        inventory.update_project(404, admin, status="completed")
    with pytest.raises(UnauthorizedError):
        inventory.update_project(project.id, member, status="on_hold")
