import logging
from typing import Optional
from urllib.parse import urlencode, urlparse

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse

from spendlog.core.security import create_state_token, decode_state_token
from spendlog.core.settings import Settings
from spendlog.deps import DB, AppSettings, get_optional_session, get_session_token
from spendlog.models import Session, User
from spendlog.schemas.auth import (
    AuthResponse,
    SessionOut,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    SocialSignInRequest,
    SocialSignInResponse,
    UserOut,
)
from spendlog.schemas.common import ErrorResponse, SuccessResponse
from spendlog.services import identity
from spendlog.services.identity import AuthError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)


def _client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _set_session_cookie(response: Response, settings: Settings, session: Session) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.token,
        max_age=settings.SESSION_EXPIRES_SECONDS,
        httponly=True,
        samesite="lax",
        secure=settings.AUTH_BASE_URL.startswith("https://"),
        path="/",
    )


def _is_trusted_callback(settings: Settings, callback_url: str) -> bool:
    if callback_url.startswith("/"):
        # Browsers read "//host" and "/\host" as another origin
        return callback_url[1:2] not in ("/", "\\")

    target = urlparse(callback_url)
    for origin in settings.trusted_origins:
        if not origin:
            continue
        trusted = urlparse(origin)
        if target.scheme.lower() != trusted.scheme.lower():
            continue
        # Deep-link schemes such as exp:// are trusted as a whole
        if not trusted.netloc or target.netloc.lower() == trusted.netloc.lower():
            return True
    return False


def _start_session(db, settings: Settings, request: Request, response: Response, user: User) -> AuthResponse:
    session = identity.create_session(db, settings, user, **_client_info(request))
    db.commit()
    db.refresh(user)
    _set_session_cookie(response, settings, session)
    return AuthResponse(token=session.token, user=UserOut.model_validate(user))


@router.post("/sign-up/email", response_model=AuthResponse)
def sign_up_email(payload: SignUpRequest, request: Request, response: Response, db: DB, settings: AppSettings):
    try:
        user = identity.sign_up_email(db, payload.name, payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    logger.info(f"Registered user {user.id}")
    return _start_session(db, settings, request, response, user)


@router.post("/sign-in/email", response_model=AuthResponse)
def sign_in_email(payload: SignInRequest, request: Request, response: Response, db: DB, settings: AppSettings):
    try:
        user = identity.sign_in_email(db, payload.email, payload.password)
    except AuthError as exc:
        logger.info("Email sign-in rejected")
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    return _start_session(db, settings, request, response, user)


@router.post("/sign-in/social", response_model=SocialSignInResponse)
def sign_in_social(
    payload: SocialSignInRequest,
    request: Request,
    response: Response,
    db: DB,
    settings: AppSettings,
):
    if payload.provider != identity.GOOGLE_PROVIDER:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported provider")

    callback_url = payload.callback_url or "/"
    if not _is_trusted_callback(settings, callback_url):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid callbackURL")

    # Mobile clients sign in with Google natively and hand over the ID token
    if payload.id_token:
        try:
            id_info = identity.verify_google_id_token(settings, payload.id_token)
            user = identity.upsert_google_user(db, id_info, {"id_token": payload.id_token})
        except AuthError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message)
        auth = _start_session(db, settings, request, response, user)
        return SocialSignInResponse(redirect=False, token=auth.token, user=auth.user)

    if not settings.GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google sign-in is not configured")

    state = create_state_token(settings, callback_url)
    return SocialSignInResponse(redirect=True, url=identity.build_google_authorization_url(settings, state))


@router.get("/callback/google")
def google_callback(
    request: Request,
    db: DB,
    settings: AppSettings,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    if error:
        logger.info(f"Google sign-in returned error: {error}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google sign-in failed")
    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code or state")

    try:
        callback_url = decode_state_token(settings, state).get("callback_url") or "/"
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid state")
    if not _is_trusted_callback(settings, callback_url):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid callbackURL")

    try:
        tokens = identity.exchange_google_code(settings, code)
        id_info = identity.verify_google_id_token(settings, tokens["id_token"])
        user = identity.upsert_google_user(db, id_info, tokens)
    except AuthError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)

    session = identity.create_session(db, settings, user, **_client_info(request))
    db.commit()

    target = callback_url
    if urlparse(callback_url).scheme not in ("", "http", "https"):
        # Deep links cannot receive our cookie, so the token rides along
        separator = "&" if "?" in callback_url else "?"
        target = f"{callback_url}{separator}{urlencode({'token': session.token})}"

    redirect = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    _set_session_cookie(redirect, settings, session)
    return redirect


@router.get("/get-session", response_model=Optional[SessionResponse])
def get_session(session_data=Depends(get_optional_session)):
    if session_data is None:
        return None
    session, user = session_data
    return SessionResponse(session=SessionOut.model_validate(session), user=UserOut.model_validate(user))


@router.post("/sign-out", response_model=SuccessResponse)
def sign_out(request: Request, response: Response, db: DB, settings: AppSettings):
    if identity.delete_session(db, get_session_token(request, settings)):
        db.commit()
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return SuccessResponse(success=True)
