import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status

from spendlog.db import init_db
from spendlog.deps import DB, AppSettings
from spendlog.schemas.common import ErrorResponse, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Migrations"],
    responses={401: {"model": ErrorResponse}},
)


# One-time schema provisioning
@router.post("/migrate", response_model=MessageResponse)
def run_migrations(
    db: DB,
    settings: AppSettings,
    x_migrate_token: Optional[str] = Header(None),
):
    if settings.MIGRATE_TOKEN:
        if not x_migrate_token or not secrets.compare_digest(x_migrate_token, settings.MIGRATE_TOKEN):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    else:
        logger.warning("POST /api/migrate called without MIGRATE_TOKEN configured; endpoint is unauthenticated")

    init_db(db.get_bind())
    logger.info("Migrations completed")
    return MessageResponse(message="Migrations completed")
