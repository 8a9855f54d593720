import logging
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import delete, select, update

from spendlog.deps import DB, CurrentUser
from spendlog.models import Transaction, TransactionType, utcnow
from spendlog.schemas.common import ErrorResponse, SuccessResponse
from spendlog.schemas.transactions import (
    TransactionListResponse,
    TransactionOut,
    TransactionPayload,
    TransactionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/transactions",
    tags=["Transactions"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)

LIST_LIMIT = 50
TRANSACTION_TYPES = {t.value for t in TransactionType}


def parse_amount(value: Any) -> Optional[str]:
    """Exact decimal text for an amount, or None if it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return format(amount, "f")


def parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        # Date-only and naive values are read as UTC
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_day_range(date_param: str, tz_offset_param: Optional[str]) -> Tuple[datetime, datetime]:
    """Return the UTC [start, end) window covering one local calendar day.

    tz_offset_param is the caller's signed UTC offset in minutes (UTC-5 is
    -300), so local midnight is UTC midnight minus the offset.
    Raises ValueError for anything that does not parse.
    """
    parts = date_param.split("-")
    if len(parts) != 3:
        raise ValueError("date must be YYYY-MM-DD")
    year, month, day = (int(part) for part in parts)
    if not year or not month or not day:
        raise ValueError("date parts must be non-zero")

    if tz_offset_param is None:
        raise ValueError("tzOffset is required with date")
    tz_offset = float(tz_offset_param)
    if not math.isfinite(tz_offset):
        raise ValueError("tzOffset must be finite")

    try:
        day_start = datetime(year, month, day, tzinfo=timezone.utc) - timedelta(minutes=tz_offset)
        day_end = day_start + timedelta(hours=24)
    except OverflowError:
        raise ValueError("date and tzOffset fall outside the representable range")
    return day_start, day_end


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _parse_payload(payload: TransactionPayload) -> dict:
    title = (payload.title or "").strip()
    amount = parse_amount(payload.amount)
    currency = (payload.currency or "").strip().upper()
    tx_type = (payload.type or "").strip().lower()

    if not title or amount is None or not currency or tx_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    values = {
        "title": title,
        "amount": amount,
        "currency": currency,
        "type": tx_type,
        "category": _clean_optional(payload.category),
        "note": _clean_optional(payload.note),
    }
    if payload.occurred_at:
        try:
            values["occurred_at"] = parse_datetime(payload.occurred_at)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    return values


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    current_user: CurrentUser,
    db: DB,
    date: Optional[str] = None,
    tz_offset: Optional[str] = Query(
        None,
        alias="tzOffset",
        description=(
            "Signed UTC offset of the caller in minutes (UTC-5 is -300, UTC+5:30 is 330). "
            "This is the negation of JavaScript's Date.getTimezoneOffset()."
        ),
    ),
):
    query = select(Transaction).where(Transaction.user_id == current_user.id)

    if date:
        try:
            day_start, day_end = parse_day_range(date, tz_offset)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid date or tzOffset")
        query = query.where(Transaction.occurred_at >= day_start, Transaction.occurred_at < day_end)

    query = query.order_by(Transaction.occurred_at.desc(), Transaction.created_at.desc()).limit(LIST_LIMIT)
    transactions = db.execute(query).scalars().all()
    return TransactionListResponse(transactions=[TransactionOut.model_validate(tx) for tx in transactions])


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
def create_transaction(payload: TransactionPayload, current_user: CurrentUser, db: DB):
    values = _parse_payload(payload)
    now = utcnow()
    values.setdefault("occurred_at", now)

    db_tx = Transaction(user_id=current_user.id, created_at=now, updated_at=now, **values)
    db.add(db_tx)
    db.commit()
    db.refresh(db_tx)
    logger.info(f"Created transaction {db_tx.id} for user {current_user.id}")
    return TransactionResponse(transaction=TransactionOut.model_validate(db_tx))


@router.get("/{transaction_id}", response_model=TransactionResponse)
def read_transaction(transaction_id: str, current_user: CurrentUser, db: DB):
    db_tx = db.execute(
        select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == current_user.id)
    ).scalar_one_or_none()
    if db_tx is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return TransactionResponse(transaction=TransactionOut.model_validate(db_tx))


@router.put("/{transaction_id}", response_model=TransactionResponse)
def update_transaction(transaction_id: str, payload: TransactionPayload, current_user: CurrentUser, db: DB):
    values = _parse_payload(payload)
    values["updated_at"] = utcnow()

    # Ownership and existence share one condition, so foreign rows look missing
    updated = db.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.user_id == current_user.id)
        .values(**values)
        .returning(Transaction)
    ).scalar_one_or_none()
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    db.commit()
    db.refresh(updated)
    return TransactionResponse(transaction=TransactionOut.model_validate(updated))


@router.delete("/{transaction_id}", response_model=SuccessResponse)
def delete_transaction(transaction_id: str, current_user: CurrentUser, db: DB):
    result = db.execute(
        delete(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == current_user.id)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    db.commit()
    logger.info(f"Deleted transaction {transaction_id} for user {current_user.id}")
    return SuccessResponse(success=True)
