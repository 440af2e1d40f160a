from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Generic, Literal, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


class RunMode(str, Enum):
    STANDARD = "standard"
    SIMPLE = "simple"


class UserProfile(BaseModel):
    # the backend sends balance, concurrency, etc.; keep whatever arrives
    model_config = ConfigDict(extra="allow")

    id: int
    email: str
    username: str = ""
    role: str = "user"
    run_mode: Optional[RunMode] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Authenticated(BaseModel):
    kind: Literal["authenticated"] = "authenticated"
    token: str
    user: UserProfile


class SecondFactorRequired(BaseModel):
    kind: Literal["second_factor_required"] = "second_factor_required"
    temp_token: str
    user_email_masked: Optional[str] = None


LoginOutcome = Annotated[Union[Authenticated, SecondFactorRequired], Field(discriminator="kind")]


def parse_login_response(payload: Mapping[str, Any]) -> Union[Authenticated, SecondFactorRequired]:
    """Decode a login/2fa/register response body into the tagged outcome.

    The backend signals a pending second factor with ``requires_2fa`` and a
    ``temp_token``; any other successful body carries ``access_token`` and
    ``user``.
    """
    if payload.get("requires_2fa"):
        return SecondFactorRequired(
            temp_token=payload["temp_token"],
            user_email_masked=payload.get("user_email_masked"),
        )
    return Authenticated(
        token=payload["access_token"],
        user=UserProfile.model_validate(payload["user"]),
    )


class Credentials(BaseModel):
    email: str
    password: str
    turnstile_token: Optional[str] = None


class RegistrationData(BaseModel):
    email: str
    password: str
    verify_code: Optional[str] = None
    promo_code: Optional[str] = None
    turnstile_token: Optional[str] = None


class EntryMethod(str, Enum):
    AUTHORIZATION_CODE = "authorization-code"
    COOKIE_SESSION_KEY = "cookie-session-key"


class TargetResourceKind(str, Enum):
    OAUTH = "oauth"
    SETUP_TOKEN = "setup-token"


class AccountLinkSession(BaseModel):
    session_id: str = ""  # empty for the cookie method
    authorization_url: Optional[str] = None
    entry_method: EntryMethod
    target_kind: TargetResourceKind
    proxy_config: Dict[str, int] = Field(default_factory=dict)


class TokenInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    org_uuid: Optional[str] = None
    account_uuid: Optional[str] = None
    email_address: Optional[str] = None


T = TypeVar("T")


@dataclass
class LinkResult(Generic[T]):
    """Outcome of one account-link call: either ``value`` or ``error``."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok
