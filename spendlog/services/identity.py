from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple
from urllib.parse import urlencode

import requests
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from spendlog.core.security import generate_session_token, hash_password, verify_password
from spendlog.core.settings import Settings
from spendlog.models import CREDENTIAL_PROVIDER, GOOGLE_PROVIDER, Account, Session, User

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES = "openid email profile"
MIN_PASSWORD_LENGTH = 8


class AuthError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def google_redirect_uri(settings: Settings) -> str:
    return f"{settings.AUTH_BASE_URL.rstrip('/')}/api/auth/callback/google"


# --- Sessions ---

def create_session(
    db: DBSession,
    settings: Settings,
    user: User,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Session:
    session = Session(
        token=generate_session_token(),
        user_id=user.id,
        expires_at=_now() + timedelta(seconds=settings.SESSION_EXPIRES_SECONDS),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(session)
    db.flush()
    return session


def resolve_session(db: DBSession, settings: Settings, token: Optional[str]) -> Optional[Tuple[Session, User]]:
    """Look up a live session by token.

    Expired sessions are deleted. A session whose last update is older than
    SESSION_UPDATE_AGE_SECONDS gets its expiry pushed forward. Both changes
    are committed here.
    """
    if not token:
        return None

    session = db.execute(select(Session).filter_by(token=token)).scalar_one_or_none()
    if session is None:
        return None

    now = _now()
    if session.expires_at <= now:
        logger.info(f"Session {session.id} expired, removing")
        db.delete(session)
        db.commit()
        return None

    if now - session.updated_at >= timedelta(seconds=settings.SESSION_UPDATE_AGE_SECONDS):
        session.expires_at = now + timedelta(seconds=settings.SESSION_EXPIRES_SECONDS)
        session.updated_at = now
        db.commit()
        db.refresh(session)

    return session, session.user


def delete_session(db: DBSession, token: Optional[str]) -> bool:
    if not token:
        return False
    session = db.execute(select(Session).filter_by(token=token)).scalar_one_or_none()
    if session is None:
        return False
    db.delete(session)
    db.flush()
    return True


# --- Email / password ---

def _get_user_by_email(db: DBSession, email: str) -> Optional[User]:
    return db.execute(select(User).filter_by(email=email.lower())).scalar_one_or_none()


def sign_up_email(db: DBSession, name: str, email: str, password: str) -> User:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(400, "Password too short")
    if _get_user_by_email(db, email):
        raise AuthError(400, "User already exists")

    user = User(name=name.strip(), email=email.lower(), email_verified=False)
    db.add(user)
    db.flush()
    db.add(
        Account(
            account_id=user.id,
            provider_id=CREDENTIAL_PROVIDER,
            user_id=user.id,
            password=hash_password(password),
        )
    )
    db.flush()
    return user


def sign_in_email(db: DBSession, email: str, password: str) -> User:
    user = _get_user_by_email(db, email)
    if user is None:
        raise AuthError(401, "Invalid email or password")

    account = db.execute(
        select(Account).filter_by(user_id=user.id, provider_id=CREDENTIAL_PROVIDER)
    ).scalar_one_or_none()
    if account is None or not account.password or not verify_password(password, account.password):
        raise AuthError(401, "Invalid email or password")
    return user


# --- Google ---

def build_google_authorization_url(settings: Settings, state: str) -> str:
    params = {
        "client_id": settings.GOOGLE_CLIENT_ID,
        "redirect_uri": google_redirect_uri(settings),
        "response_type": "code",
        "scope": GOOGLE_SCOPES,
        "state": state,
        "prompt": "select_account",
        "access_type": "offline",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def verify_google_id_token(settings: Settings, token: str) -> dict[str, Any]:
    try:
        id_info = id_token.verify_oauth2_token(
            token,
            google_requests.Request(),
            settings.GOOGLE_CLIENT_ID,
        )
        if id_info.get("aud") != settings.GOOGLE_CLIENT_ID:
            raise ValueError("Invalid audience")
    except Exception as exc:
        logger.warning(f"Google ID token rejected: {exc}")
        raise AuthError(401, "Invalid Google ID token") from exc
    return id_info


def exchange_google_code(settings: Settings, code: str) -> dict[str, Any]:
    try:
        response = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "redirect_uri": google_redirect_uri(settings),
                "grant_type": "authorization_code",
            },
            timeout=10,
        )
        response.raise_for_status()
        tokens = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.error(f"Google code exchange failed: {exc}")
        raise AuthError(401, "Failed to exchange authorization code") from exc

    if not tokens.get("id_token"):
        raise AuthError(401, "Google did not return an ID token")
    return tokens


def upsert_google_user(db: DBSession, id_info: dict[str, Any], tokens: Optional[dict[str, Any]] = None) -> User:
    sub = id_info.get("sub")
    email = id_info.get("email")
    if not sub or not email:
        raise AuthError(401, "Google profile is missing sub or email")
    name = id_info.get("name") or email
    tokens = tokens or {}

    account = db.execute(
        select(Account).filter_by(provider_id=GOOGLE_PROVIDER, account_id=sub)
    ).scalar_one_or_none()

    if account is not None:
        user = account.user
    else:
        # Link to an existing email/password user with the same address
        user = _get_user_by_email(db, email)
        if user is None:
            user = User(name=name, email=email.lower(), image=id_info.get("picture"))
            db.add(user)
            db.flush()
        account = Account(account_id=sub, provider_id=GOOGLE_PROVIDER, user_id=user.id)
        db.add(account)

    user.name = name
    user.image = id_info.get("picture") or user.image
    if id_info.get("email_verified"):
        user.email_verified = True

    account.id_token = tokens.get("id_token", account.id_token)
    account.access_token = tokens.get("access_token", account.access_token)
    account.refresh_token = tokens.get("refresh_token", account.refresh_token)
    account.scope = tokens.get("scope", account.scope)
    if tokens.get("expires_in"):
        account.access_token_expires_at = _now() + timedelta(seconds=int(tokens["expires_in"]))

    db.flush()
    return user
