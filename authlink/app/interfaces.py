from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from .models import (
    Authenticated,
    Credentials,
    EntryMethod,
    LoginOutcome,
    RegistrationData,
    TargetResourceKind,
    TokenInfo,
    UserProfile,
)


class AuthBackend(Protocol):
    async def login(self, credentials: Credentials) -> LoginOutcome: ...

    async def complete_second_factor(self, temp_token: str, code: str) -> Authenticated: ...

    async def register(self, data: RegistrationData) -> Authenticated: ...

    async def fetch_current_profile(self, token: str) -> UserProfile: ...

    async def logout(self, token: Optional[str]) -> bool: ...

    async def generate_external_auth_session(
        self, target_kind: TargetResourceKind, proxy_config: Dict[str, Any], token: Optional[str]
    ) -> Dict[str, str]: ...

    async def exchange_external_auth_code(
        self,
        entry_method: EntryMethod,
        target_kind: TargetResourceKind,
        payload: Dict[str, Any],
        token: Optional[str],
    ) -> TokenInfo: ...


class PersistentStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...
