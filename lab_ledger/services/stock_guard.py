
from sqlmodel import Session, select

from lab_ledger.errors import InsufficientStockError, InvalidInputError, NotFoundError
from lab_ledger.models import Item, utcnow


def check_delta(item_id: int, current: int, delta: int) -> int:
    """Validate ``current + delta`` and return the new quantity.

    ``delta`` is negative for consumption (issue, allocate, borrow) and
    positive for restoration. A zero delta is a caller error.
    """
    if delta == 0:
        raise InvalidInputError("Stock delta must not be zero")

    new_qty = current + delta
    if new_qty < 0:
        raise InsufficientStockError(item_id, available=current, requested=-delta)
    return new_qty


def positive_quantity(quantity: int, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInputError(f"{field} must be a positive integer")
    return quantity


class StockGuard:
    """
    Reads an item's committed quantity inside the caller's transaction and
    decides whether a delta may be applied.

    ``reserve`` never writes. ``apply`` is the only place item quantities are
    changed, and it is only called from inside a coordinator unit.
    """

    def load(self, session: Session, item_id: int) -> Item:
        item = session.exec(
            select(Item)
            .where(Item.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if item is None:
            raise NotFoundError("Item", item_id)
        return item

    def reserve(self, session: Session, item_id: int, delta: int) -> Item:
        item = self.load(session, item_id)
        check_delta(item_id, item.quantity, delta)
        return item

    def apply(self, session: Session, item_id: int, delta: int) -> tuple[Item, int]:
        item = self.reserve(session, item_id, delta)
        old_qty = item.quantity
        item.quantity = old_qty + delta
        item.updated_at = utcnow()
        session.add(item)
        session.flush()
        return item, old_qty
