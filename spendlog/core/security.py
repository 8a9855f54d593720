import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from spendlog.core.settings import Settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def create_state_token(settings: Settings, callback_url: str) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.OAUTH_STATE_EXPIRE_MINUTES)
    payload = {
        "callback_url": callback_url,
        "nonce": secrets.token_urlsafe(16),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.AUTH_SECRET, algorithm=settings.ALGORITHM)


def decode_state_token(settings: Settings, token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.AUTH_SECRET, algorithms=[settings.ALGORITHM])


def get_session_token_from_request(
    authorization_header: str | None,
    cookies: Dict[str, str],
    cookie_name: str,
) -> str | None:
    if authorization_header and authorization_header.lower().startswith("bearer "):
        token = authorization_header.split(" ", 1)[1].strip()
        if token:
            return token
    return cookies.get(cookie_name) or None
