from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from .errors import ValidationError
from .interfaces import AuthBackend
from .models import (
    AccountLinkSession,
    EntryMethod,
    LinkResult,
    TargetResourceKind,
    TokenInfo,
)

logger = logging.getLogger(__name__)

EXTRA_INFO_FIELDS = ("org_uuid", "account_uuid", "email_address")

MISSING_CODE_MESSAGE = "Missing auth code or session ID"
MISSING_SESSION_KEY_MESSAGE = "Please enter sessionKey"


def parse_session_keys(text: str) -> List[str]:
    """One session key per line; blank lines dropped, whitespace trimmed."""
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def build_extra_info(token_info: Union[TokenInfo, Mapping]) -> Optional[Dict[str, str]]:
    """Pick the identity fields worth attaching to the new account.

    Returns ``None`` rather than ``{}`` when there is nothing to attach.
    """
    if isinstance(token_info, TokenInfo):
        token_info = token_info.model_dump()
    extra = {name: token_info[name] for name in EXTRA_INFO_FIELDS if token_info.get(name)}
    return extra or None


def _proxy_config(proxy_id: Optional[int]) -> Dict[str, int]:
    return {"proxy_id": proxy_id} if proxy_id else {}


def _coerce_kind(value) -> Optional[TargetResourceKind]:
    try:
        return TargetResourceKind(value)
    except ValueError:
        return None


def _error_message(exc: Exception, fallback: str) -> str:
    return getattr(exc, "detail", None) or fallback


def _require_text(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(message)
    return value


class AccountLinkOrchestrator:
    """Drives one generate -> exchange (or cookie exchange) attempt at a time.

    Nothing here raises: each call returns a ``LinkResult`` and also records
    the message in ``error`` for UIs that poll it. Only one session's worth of
    state is held, so a second ``generate_authorization_url`` replaces the
    first before it is exchanged.
    """

    def __init__(self, backend: AuthBackend, token_source: Callable[[], Optional[str]] = lambda: None):
        self.backend = backend
        self.token_source = token_source
        self.session: Optional[AccountLinkSession] = None
        self.error = ""
        self.loading = False

    def reset(self) -> None:
        self.session = None
        self.error = ""
        self.loading = False

    def _fail(self, message: str) -> LinkResult:
        self.error = message
        return LinkResult(error=message)

    async def generate_authorization_url(
        self, target_kind: TargetResourceKind, proxy_id: Optional[int] = None
    ) -> LinkResult[AccountLinkSession]:
        kind = _coerce_kind(target_kind)
        if kind is None:
            return self._fail(f"Unknown account type: {target_kind}")
        proxy_config = _proxy_config(proxy_id)

        self.loading = True
        self.session = None
        self.error = ""
        try:
            minted = await self.backend.generate_external_auth_session(kind, proxy_config, self.token_source())
            if not minted.get("session_id"):
                return self._fail("Failed to generate auth URL")
            self.session = AccountLinkSession(
                session_id=minted["session_id"],
                authorization_url=minted.get("authorization_url") or None,
                entry_method=EntryMethod.AUTHORIZATION_CODE,
                target_kind=kind,
                proxy_config=proxy_config,
            )
            return LinkResult(value=self.session)
        except Exception as e:
            logger.warning("Generate auth URL failed: %s", e)
            return self._fail(_error_message(e, "Failed to generate auth URL"))
        finally:
            self.loading = False

    async def exchange_authorization_code(
        self, target_kind: TargetResourceKind, code: str, proxy_id: Optional[int] = None
    ) -> LinkResult[TokenInfo]:
        session = self.session
        try:
            code = _require_text(code, MISSING_CODE_MESSAGE)
            if session is None or not session.session_id:
                raise ValidationError(MISSING_CODE_MESSAGE)
        except ValidationError as e:
            return self._fail(e.message)

        kind = _coerce_kind(target_kind)
        if kind is None:
            return self._fail(f"Unknown account type: {target_kind}")
        proxy_config = _proxy_config(proxy_id) if proxy_id else session.proxy_config

        self.loading = True
        self.error = ""
        try:
            token_info = await self.backend.exchange_external_auth_code(
                EntryMethod.AUTHORIZATION_CODE,
                kind,
                {"session_id": session.session_id, "code": code, **proxy_config},
                self.token_source(),
            )
            # single use; keep it on failure so the operator can retry the code
            if self.session is session:
                self.session = None
            return LinkResult(value=token_info)
        except Exception as e:
            logger.warning("Exchange auth code failed: %s", e)
            return self._fail(_error_message(e, "Failed to exchange auth code"))
        finally:
            self.loading = False

    async def exchange_cookie_session_key(
        self, target_kind: TargetResourceKind, raw_input: str, proxy_id: Optional[int] = None
    ) -> LinkResult[TokenInfo]:
        try:
            session_key = _require_text(raw_input, MISSING_SESSION_KEY_MESSAGE)
        except ValidationError as e:
            return self._fail(e.message)

        kind = _coerce_kind(target_kind)
        if kind is None:
            return self._fail(f"Unknown account type: {target_kind}")
        # no code-exchange session here; a pending one stays usable
        proxy_config = _proxy_config(proxy_id)

        self.loading = True
        self.error = ""
        try:
            token_info = await self.backend.exchange_external_auth_code(
                EntryMethod.COOKIE_SESSION_KEY,
                kind,
                {"session_id": "", "code": session_key, **proxy_config},
                self.token_source(),
            )
            return LinkResult(value=token_info)
        except Exception as e:
            logger.warning("Cookie auth failed: %s", e)
            return self._fail(_error_message(e, "Cookie authorization failed"))
        finally:
            self.loading = False

    async def exchange_session_keys(
        self, target_kind: TargetResourceKind, raw_input: str, proxy_id: Optional[int] = None
    ) -> List[Tuple[str, LinkResult[TokenInfo]]]:
        """Exchange every key in ``raw_input`` on its own, in order."""
        results = []
        for key in parse_session_keys(raw_input):
            results.append((key, await self.exchange_cookie_session_key(target_kind, key, proxy_id)))
        return results
