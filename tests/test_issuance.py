import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from lab_ledger.errors import InsufficientStockError, InvalidInputError, NotFoundError, UnauthorizedError
from lab_ledger.models import HistoryEntry, Transaction
from lab_ledger.services.coordinator import TransactionCoordinator
from lab_ledger.services.issuance import IssuanceService


@pytest.fixture
def issuance(coordinator):
    return IssuanceService(coordinator)


def test_oscilloscope_issue_and_return(issuance, admin, make_user, make_item, quantity_of, count_rows):
    user_a = make_user("alice")
    user_b = make_user("bob")
    item_id = make_item("Oscilloscope", 5)

    tx = issuance.issue(item_id, 3, admin, user_id=user_a.id)
    assert tx.direction == "issue"
    assert tx.quantity == 3
    assert quantity_of(item_id) == 2
    assert count_rows(Transaction) == 1
    assert count_rows(HistoryEntry, HistoryEntry.action == "ITEM_ISSUED") == 1

    with pytest.raises(InsufficientStockError) as exc_info:
        issuance.issue(item_id, 3, admin, user_id=user_b.id)
    assert exc_info.value.available == 2
    assert exc_info.value.requested == 3
    assert quantity_of(item_id) == 2
    assert count_rows(Transaction) == 1
    assert count_rows(HistoryEntry) == 1

    back = issuance.return_stock(item_id, 3, admin, user_id=user_a.id)
    assert back.direction == "return"
    assert quantity_of(item_id) == 5
    assert count_rows(Transaction, Transaction.direction == "return") == 1
    assert count_rows(HistoryEntry, HistoryEntry.action == "RETURN_ITEM") == 1


def test_issue_to_zero_is_allowed(issuance, admin, make_item, quantity_of):
    item_id = make_item("Probe", 2)
    issuance.issue(item_id, 2, admin)
    assert quantity_of(item_id) == 0


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_is_rejected(issuance, admin, make_item, count_rows, quantity):
    item_id = make_item("Probe", 2)
    with pytest.raises(InvalidInputError):
        issuance.issue(item_id, quantity, admin)
    assert count_rows(Transaction) == 0


def test_members_cannot_issue(issuance, member, make_item, quantity_of):
    item_id = make_item("Probe", 2)
    with pytest.raises(UnauthorizedError):
        issuance.issue(item_id, 1, member)
    assert quantity_of(item_id) == 2


def test_unknown_item_and_user(issuance, admin, make_item):
    with pytest.raises(NotFoundError, match="Item 404"):
        issuance.issue(404, 1, admin)

    item_id = make_item("Probe", 2)
    with pytest.raises(NotFoundError, match="User 77"):
        issuance.issue(item_id, 1, admin, user_id=77)


def test_concurrent_issues_never_oversell(store_factory, make_user, make_item, quantity_of, count_rows, tmp_path):
    store = store_factory(f"sqlite:///{tmp_path / 'ledger.db'}")
    admin = make_user("admin", "admin", on=store)
    item_id = make_item("Oscilloscope", 3, on=store)
    issuance = IssuanceService(TransactionCoordinator(store, retry_backoff=0))
    barrier = threading.Barrier(2)

    def attempt():
        barrier.wait()
        try:
            issuance.issue(item_id, 3, admin)
            return "ok"
        except InsufficientStockError:
            return "insufficient"

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = sorted(f.result() for f in [pool.submit(attempt), pool.submit(attempt)])

    assert results == ["insufficient", "ok"]
    assert quantity_of(item_id, on=store) == 0
    assert count_rows(Transaction, on=store) == 1


def test_new_rows_carry_utc_timestamps(issuance, admin, make_user, make_item):
    recipient = make_user("carol")
    item_id = make_item("Scope", 3)

    tx = issuance.issue(item_id, 1, admin, user_id=recipient.id)
    assert tx.delta == -1
    assert tx.created_at.tzinfo is not None
    assert tx.created_at.utcoffset() == timedelta(0)
