from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type, Union

import httpx
from pydantic import ValidationError as ModelValidationError

from .errors import (
    AuthenticationError,
    BackendError,
    RegistrationError,
    SecondFactorError,
)
from .models import (
    Authenticated,
    Credentials,
    EntryMethod,
    RegistrationData,
    SecondFactorRequired,
    TargetResourceKind,
    TokenInfo,
    UserProfile,
    parse_login_response,
)

logger = logging.getLogger(__name__)


GENERATE_PATHS = {
    TargetResourceKind.OAUTH: "/admin/accounts/generate-auth-url",
    TargetResourceKind.SETUP_TOKEN: "/admin/accounts/generate-setup-token-url",
}

EXCHANGE_PATHS = {
    (EntryMethod.AUTHORIZATION_CODE, TargetResourceKind.OAUTH): "/admin/accounts/exchange-code",
    (EntryMethod.AUTHORIZATION_CODE, TargetResourceKind.SETUP_TOKEN): "/admin/accounts/exchange-setup-token-code",
    (EntryMethod.COOKIE_SESSION_KEY, TargetResourceKind.OAUTH): "/admin/accounts/cookie-auth",
    (EntryMethod.COOKIE_SESSION_KEY, TargetResourceKind.SETUP_TOKEN): "/admin/accounts/setup-token-cookie-auth",
}


def _error_detail(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        for field in ("detail", "message"):
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
    return None


def _decode_outcome(data: Any, error_cls: Type[BackendError]):
    if not isinstance(data, dict):
        raise error_cls("Malformed auth response")
    try:
        return parse_login_response(data)
    except (KeyError, ModelValidationError) as e:
        raise error_cls("Malformed auth response") from e


def _unwrap(data: Any) -> Any:
    # {"code": 0, "message": "success", "data": {...}}
    if isinstance(data, dict) and "code" in data and "data" in data:
        return data["data"]
    return data


class AuthClient:
    """HTTP implementation of the auth backend over the admin API."""

    def __init__(
        self,
        base_url: str,
        timeout_sec: float = 8.0,
        api_prefix: str = "/api/v1",
        logout_path: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.timeout = timeout_sec
        self.logout_path = logout_path
        self._transport = transport

    def _headers(self, access: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {access}"} if access else {}

    async def _request(
        self,
        method: str,
        path: str,
        access: Optional[str] = None,
        json: Optional[dict] = None,
        error_cls: Type[BackendError] = BackendError,
    ) -> Any:
        url = f"{self.base_url}{self.api_prefix}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.request(method, url, headers=self._headers(access), json=json)
        except httpx.HTTPError as e:
            raise error_cls(f"{method} {path} failed: {e.__class__.__name__}") from e

        try:
            data = r.json()
        except ValueError:
            data = r.text

        if r.status_code >= 400:
            detail = _error_detail(data)
            raise error_cls(detail or f"{method} {path} returned {r.status_code}", status_code=r.status_code, detail=detail)
        return _unwrap(data)

    # SESSION
    async def login(self, credentials: Credentials) -> Union[Authenticated, SecondFactorRequired]:
        data = await self._request(
            "POST", "/auth/login", json=credentials.model_dump(exclude_none=True), error_cls=AuthenticationError
        )
        return _decode_outcome(data, AuthenticationError)

    async def complete_second_factor(self, temp_token: str, code: str) -> Authenticated:
        data = await self._request(
            "POST",
            "/auth/login/2fa",
            json={"temp_token": temp_token, "totp_code": code},
            error_cls=SecondFactorError,
        )
        outcome = _decode_outcome(data, SecondFactorError)
        if isinstance(outcome, SecondFactorRequired):
            raise SecondFactorError("Second factor was not accepted")
        return outcome

    async def register(self, data: RegistrationData) -> Authenticated:
        body = await self._request(
            "POST", "/auth/register", json=data.model_dump(exclude_none=True), error_cls=RegistrationError
        )
        outcome = _decode_outcome(body, RegistrationError)
        if isinstance(outcome, SecondFactorRequired):
            raise RegistrationError("Unexpected second-factor challenge on registration")
        return outcome

    async def fetch_current_profile(self, token: str) -> UserProfile:
        data = await self._request("GET", "/auth/me", token, error_cls=AuthenticationError)
        try:
            return UserProfile.model_validate(data)
        except ModelValidationError as e:
            raise AuthenticationError("Malformed profile response") from e

    async def logout(self, token: Optional[str]) -> bool:
        if not self.logout_path or not token:
            return False
        try:
            await self._request("POST", self.logout_path, token)
            return True
        except BackendError as e:
            logger.warning("Remote logout failed: %s", e)
            return False

    # ACCOUNT LINK
    async def generate_external_auth_session(
        self, target_kind: TargetResourceKind, proxy_config: Dict[str, Any], token: Optional[str]
    ) -> Dict[str, str]:
        data = await self._request("POST", GENERATE_PATHS[target_kind], token, json=dict(proxy_config))
        if not isinstance(data, dict):
            raise BackendError("Malformed auth URL response")
        return {"authorization_url": data.get("auth_url") or "", "session_id": data.get("session_id") or ""}

    async def exchange_external_auth_code(
        self,
        entry_method: EntryMethod,
        target_kind: TargetResourceKind,
        payload: Dict[str, Any],
        token: Optional[str],
    ) -> TokenInfo:
        data = await self._request("POST", EXCHANGE_PATHS[(entry_method, target_kind)], token, json=dict(payload))
        try:
            return TokenInfo.model_validate(data or {})
        except ModelValidationError as e:
            raise BackendError("Malformed token response") from e
