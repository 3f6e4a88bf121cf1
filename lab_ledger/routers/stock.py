from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select
from datetime import datetime, date, timedelta, timezone

from lab_ledger.actor import Actor
from lab_ledger.db import get_session
from lab_ledger.deps import get_issuance, require_admin
from lab_ledger.errors import InvalidInputError
from lab_ledger.models import Direction, Transaction
from lab_ledger.schemas import StockMove, TransactionListResponse, TransactionRead, TransactionSort
from lab_ledger.services.issuance import IssuanceService

router = APIRouter(tags=["stock"])


def _get_zone(tz_str: Optional[str]) -> Optional[ZoneInfo]:
    tz_str = (tz_str or "").strip()
    if not tz_str:
        return None
    try:
        return ZoneInfo(tz_str)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidInputError(f"Invalid tz: {tz_str} (e.g. Europe/Berlin, Asia/Kolkata, UTC)")


def _parse_dt_or_date(s: str, *, is_end: bool, assume_tz: Optional[ZoneInfo]) -> datetime:
    """
    Accepts "YYYY-MM-DD" or an ISO datetime ("...T08:30:00", "...Z", "...+05:30").

    A bare date covers the whole local day: start is 00:00, end is the next
    day's 00:00 (half-open). Naive input is read in ``assume_tz``, else UTC.
    Returns an aware UTC datetime, comparable with the stored timestamps.
    """
    s = (s or "").strip()
    if not s:
        raise InvalidInputError("start/end must not be empty")

    if len(s) == 10 and s[4] == "-" and s[7] == "-":
        try:
            d = date.fromisoformat(s)
        except ValueError:
            raise InvalidInputError(f"Bad date: {s}, expected YYYY-MM-DD")

        local_dt = datetime(d.year, d.month, d.day)
        if is_end:
            local_dt = local_dt + timedelta(days=1)
        local_dt = local_dt.replace(tzinfo=assume_tz or timezone.utc)
        return local_dt.astimezone(timezone.utc)

    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError(f"Bad datetime: {s}, e.g. 2026-01-12T08:30:00 or 2026-01-12T08:30:00Z")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=assume_tz or timezone.utc)
    return dt.astimezone(timezone.utc)


@router.post("/issue", response_model=TransactionRead, status_code=201)
def issue(
        data: StockMove,
        actor: Actor = Depends(require_admin),
        issuance: IssuanceService = Depends(get_issuance),
):
    return issuance.issue(data.item_id, data.quantity, actor, user_id=data.user_id)


@router.post("/return", response_model=TransactionRead, status_code=201)
def return_stock(
        data: StockMove,
        actor: Actor = Depends(require_admin),
        issuance: IssuanceService = Depends(get_issuance),
):
    return issuance.return_stock(data.item_id, data.quantity, actor, user_id=data.user_id)


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    item_id: Optional[int] = Query(None, ge=1),
    user_id: Optional[int] = Query(None, ge=1),
    direction: Optional[Direction] = Query(None),
    tz: Optional[str] = Query(None, description="Zone used for start/end without an offset, e.g. Asia/Kolkata"),
    start: Optional[str] = Query(None, description="e.g. 2026-01-12 or 2026-01-12T08:30:00"),
    end: Optional[str] = Query(None, description="exclusive; e.g. 2026-01-13 or 2026-01-12T20:00:00"),
    sort: TransactionSort = Query(TransactionSort.id_desc),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
    _actor: Actor = Depends(require_admin),
):
    stmt = select(Transaction)
    count_stmt = select(func.count()).select_from(Transaction)

    conds = []
    if item_id is not None:
        conds.append(Transaction.item_id == item_id)
    if user_id is not None:
        conds.append(Transaction.user_id == user_id)
    if direction is not None:
        conds.append(Transaction.direction == direction.value)

    zone = _get_zone(tz)
    start_dt = _parse_dt_or_date(start, is_end=False, assume_tz=zone) if start else None
    end_dt = _parse_dt_or_date(end, is_end=True, assume_tz=zone) if end else None
    if start_dt is not None and end_dt is not None and start_dt >= end_dt:
        raise InvalidInputError("start must be before end")
    if start_dt is not None:
        conds.append(Transaction.created_at >= start_dt)
    if end_dt is not None:
        conds.append(Transaction.created_at < end_dt)

    if conds:
        stmt = stmt.where(*conds)
        count_stmt = count_stmt.where(*conds)

    if sort == TransactionSort.id_desc:
        stmt = stmt.order_by(Transaction.id.desc())
    elif sort == TransactionSort.id_asc:
        stmt = stmt.order_by(Transaction.id.asc())
    elif sort == TransactionSort.created_desc:
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    elif sort == TransactionSort.created_asc:
        stmt = stmt.order_by(Transaction.created_at.asc(), Transaction.id.asc())

    total = session.exec(count_stmt).one()
    items = session.exec(stmt.offset(offset).limit(limit)).all()
    return {"items": items, "total": total, "limit": limit, "offset": offset}
