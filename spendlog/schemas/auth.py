from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from spendlog.schemas.common import CamelModel


class SignUpRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class SocialSignInRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    callback_url: Optional[str] = Field(None, alias="callbackURL")
    id_token: Optional[str] = Field(None, alias="idToken")


class UserOut(CamelModel):
    id: str
    name: str
    email: str
    email_verified: bool
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SessionOut(CamelModel):
    id: str
    token: str
    user_id: str
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuthResponse(CamelModel):
    token: str
    user: UserOut


class SocialSignInResponse(CamelModel):
    redirect: bool
    url: Optional[str] = None
    token: Optional[str] = None
    user: Optional[UserOut] = None


class SessionResponse(CamelModel):
    session: SessionOut
    user: UserOut
