from datetime import datetime, timezone
import io
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select
from fastapi.responses import Response
from sqlalchemy import func, or_
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill
from openpyxl.worksheet.table import Table, TableStyleInfo

from lab_ledger.actor import Actor
from lab_ledger.db import get_session
from lab_ledger.deps import get_inventory, require_admin, require_user
from lab_ledger.errors import InvalidInputError, NotFoundError
from lab_ledger.models import Item
from lab_ledger.schemas import ItemCreate, ItemListResponse, ItemRead, ItemUpdate
from lab_ledger.services.inventory import InventoryService

router = APIRouter(prefix="/items", tags=["items"])

SORTS = {
    "id_desc": Item.id.desc(),
    "id_asc": Item.id.asc(),
    "name_asc": Item.name.asc(),
    "name_desc": Item.name.desc(),
    "qty_asc": Item.quantity.asc(),
    "qty_desc": Item.quantity.desc(),
}

EXPORT_HEADER = ["ID", "Name", "Cabinet", "Quantity", "Description", "Updated"]


def _excel_time(value: datetime) -> datetime:
    # Excel cells cannot hold a timezone; write the UTC wall time
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.post("", response_model=ItemRead, status_code=201)
def create_item(
        data: ItemCreate,
        actor: Actor = Depends(require_admin),
        inventory: InventoryService = Depends(get_inventory),
):
    return inventory.create_item(actor, **data.model_dump())


@router.get("", response_model=ItemListResponse)
def list_items(
        q: str | None = None,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        sort: str = Query("name_asc", description="id_desc/id_asc/name_asc/name_desc/qty_asc/qty_desc"),
        session: Session = Depends(get_session),
        _actor: Actor = Depends(require_user),
):
    if sort not in SORTS:
        raise InvalidInputError(f"Unsupported sort: {sort}")

    conds = []
    if q:
        conds.append(or_(Item.name.contains(q), Item.cabinet.contains(q)))

    count_stmt = select(func.count()).select_from(Item)
    items_stmt = select(Item)
    if conds:
        count_stmt = count_stmt.where(*conds)
        items_stmt = items_stmt.where(*conds)

    total = session.exec(count_stmt).one()
    items = session.exec(items_stmt.order_by(SORTS[sort]).offset(offset).limit(limit)).all()
    return {"items": items, "total": total, "limit": limit, "offset": offset, "q": q}


@router.get("/export.xlsx")
def export_items_xlsx(
    q: str | None = None,
    session: Session = Depends(get_session),
    _actor: Actor = Depends(require_user),
):
    stmt = select(Item).order_by(Item.id.asc())
    if q:
        stmt = stmt.where(or_(Item.name.contains(q), Item.cabinet.contains(q)))
    items = session.exec(stmt).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"

    ws.append(EXPORT_HEADER)
    ws.row_dimensions[1].height = 24
    for col in range(1, len(EXPORT_HEADER) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = Font(bold=True)
        cell.fill = PatternFill("solid", fgColor="DDDDDD")
        cell.alignment = Alignment(horizontal="center", vertical="center")

    for item in items:
        ws.append([
            item.id,
            item.name,
            item.cabinet,
            item.quantity,
            item.description or "",
            _excel_time(item.updated_at),
        ])

    data_end_row = 1 + len(items)
    ws.freeze_panes = "A2"
    for r in range(2, data_end_row + 1):
        ws.cell(row=r, column=4).number_format = "0"
        ws.cell(row=r, column=6).number_format = "yyyy-mm-dd hh:mm:ss"

    for col, width in {"A": 8, "B": 26, "C": 12, "D": 10, "E": 36, "F": 20}.items():
        ws.column_dimensions[col].width = width

    table = Table(displayName="InventoryLedger", ref=f"A1:F{max(1, data_end_row)}")
    table.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium9",
        showFirstColumn=False,
        showLastColumn=False,
        showRowStripes=True,
        showColumnStripes=False,
    )
    ws.add_table(table)

    ws.append([])
    ws.append(["Exported", datetime.now().strftime("%Y-%m-%d %H:%M:%S")])

    buf = io.BytesIO()
    wb.save(buf)
    return Response(
        content=buf.getvalue(),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": 'attachment; filename="inventory.xlsx"'},
    )


@router.get("/{item_id}", response_model=ItemRead)
def get_item(
        item_id: int,
        session: Session = Depends(get_session),
        _actor: Actor = Depends(require_user),
):
    item = session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item", item_id)
    return item


@router.put("/{item_id}", response_model=ItemRead)
def update_item(
    item_id: int,
    body: ItemUpdate,
    actor: Actor = Depends(require_admin),
    inventory: InventoryService = Depends(get_inventory),
):
    return inventory.update_item(item_id, actor, **body.model_dump(exclude_unset=True))


@router.delete("/{item_id}")
def delete_item(
        item_id: int,
        actor: Actor = Depends(require_admin),
        inventory: InventoryService = Depends(get_inventory),
):
    inventory.delete_item(item_id, actor)
    return {"ok": True}
