from typing import Annotated, Optional, Tuple

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session as DBSession

from spendlog.core.security import get_session_token_from_request
from spendlog.core.settings import Settings, get_settings
from spendlog.db import get_db
from spendlog.models import Session, User
from spendlog.services.extraction import TransactionExtractor
from spendlog.services.identity import resolve_session


def get_session_token(request: Request, settings: Settings) -> Optional[str]:
    return get_session_token_from_request(
        request.headers.get("authorization"),
        request.cookies,
        settings.SESSION_COOKIE_NAME,
    )


def get_optional_session(
    request: Request,
    db: Annotated[DBSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Optional[Tuple[Session, User]]:
    return resolve_session(db, settings, get_session_token(request, settings))


def get_current_user(
    session_data: Annotated[Optional[Tuple[Session, User]], Depends(get_optional_session)],
) -> User:
    if session_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return session_data[1]


def get_extractor(request: Request) -> TransactionExtractor:
    # Built once in the application lifespan
    return request.app.state.extractor


CurrentUser = Annotated[User, Depends(get_current_user)]
DB = Annotated[DBSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Extractor = Annotated[TransactionExtractor, Depends(get_extractor)]
