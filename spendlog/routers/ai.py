import logging
from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from spendlog.deps import DB, CurrentUser, Extractor
from spendlog.models import Transaction, User, new_id, utcnow
from spendlog.routers.transactions import parse_amount, parse_datetime
from spendlog.schemas.common import ErrorResponse
from spendlog.schemas.transactions import AiRequest, AiResponse, ExtractedTransaction, TransactionOut
from spendlog.services.extraction import ExtractionError

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["AI"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)


def _save_extracted(
    db: Session, user: User, parsed: ExtractedTransaction, amount: str, now: datetime
) -> TransactionOut:
    occurred_at = now
    if parsed.occurred_at:
        try:
            occurred_at = parse_datetime(parsed.occurred_at)
        except ValueError:
            logger.info(f"Ignoring unparseable occurredAt from model: {parsed.occurred_at!r}")

    db_tx = Transaction(
        id=new_id(),
        user_id=user.id,
        title=parsed.title,
        amount=amount,
        currency=parsed.currency,
        type=parsed.type,
        category=parsed.category or None,
        note=parsed.note or None,
        occurred_at=occurred_at,
        created_at=now,
        updated_at=now,
    )
    db.add(db_tx)
    db.commit()
    db.refresh(db_tx)
    return TransactionOut.model_validate(db_tx)


@router.post("/ai", response_model=AiResponse)
async def create_from_text(payload: AiRequest, current_user: CurrentUser, db: DB, extractor: Extractor):
    text = (payload.text or "").strip()
    preferred_currency = (payload.currency or "").strip().upper() or "USD"

    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing text")

    now = utcnow()
    try:
        parsed = await extractor.extract(text, preferred_currency, now)
    except ExtractionError as exc:
        logger.warning(f"Extraction failed for user {current_user.id}: {exc}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to extract transaction")

    amount = parse_amount(parsed.amount)
    if amount is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to extract transaction")

    # The session is synchronous, so its round-trips stay off the event loop
    transaction = await run_in_threadpool(_save_extracted, db, current_user, parsed, amount, now)
    return AiResponse(parsed=parsed, transaction=transaction)
