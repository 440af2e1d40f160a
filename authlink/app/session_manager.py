from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from pydantic import ValidationError as ModelValidationError

from .errors import AuthenticationError, NotAuthenticatedError
from .interfaces import AuthBackend, PersistentStore
from .models import Authenticated, Credentials, LoginOutcome, RegistrationData, RunMode, UserProfile

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "auth_token"
AUTH_USER_KEY = "auth_user"
AUTO_REFRESH_INTERVAL_SEC = 60.0


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class SessionManager:
    """Owns the operator's authenticated identity.

    Token and user are set together and cleared together. Every failed
    login/2fa/register/install call leaves the manager anonymous, and every
    transition out of the authenticated state stops the refresh task.
    A call whose backend answer arrives after a newer login or logout
    neither installs its session nor tears down the newer state.
    A pending second factor is not a manager state: the caller keeps the
    ``SecondFactorRequired.temp_token`` and passes it back.
    """

    def __init__(
        self,
        backend: AuthBackend,
        store: PersistentStore,
        refresh_interval: float = AUTO_REFRESH_INTERVAL_SEC,
    ):
        self.backend = backend
        self.store = store
        self.refresh_interval = refresh_interval

        self._token: Optional[str] = None
        self._user: Optional[UserProfile] = None
        self._run_mode = RunMode.STANDARD
        self._refresh_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        # bumped on every install and teardown; a call that waited on the
        # backend only applies its outcome if nothing changed meanwhile
        self._epoch = 0

    # ==================== state ====================

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def user(self) -> Optional[UserProfile]:
        return self._user

    @property
    def run_mode(self) -> RunMode:
        return self._run_mode

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token) and self._user is not None

    @property
    def is_admin(self) -> bool:
        return self._user is not None and self._user.is_admin

    @property
    def is_simple_mode(self) -> bool:
        return self._run_mode == RunMode.SIMPLE

    @property
    def state(self) -> SessionState:
        return SessionState.AUTHENTICATED if self.is_authenticated else SessionState.ANONYMOUS

    @property
    def refresh_active(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    # ==================== actions ====================

    async def restore(self) -> bool:
        """Reload a persisted session on startup and refresh it once."""
        saved_token = await self.store.get(AUTH_TOKEN_KEY)
        saved_user = await self.store.get(AUTH_USER_KEY)
        if not saved_token or not saved_user:
            return False

        try:
            user = UserProfile.model_validate_json(saved_user)
        except ModelValidationError as e:
            logger.error("Failed to parse saved user data: %s", e)
            await self._clear_auth()
            return False

        self._epoch += 1
        self._token = saved_token
        self._apply_user(user)
        self.start_auto_refresh()
        await self._tick()
        return self.is_authenticated

    async def login(self, credentials: Credentials) -> LoginOutcome:
        epoch = self._epoch
        try:
            outcome = await self.backend.login(credentials)
            # 2FA pending: nothing is installed until complete_second_factor
            if isinstance(outcome, Authenticated):
                await self._install(outcome, epoch)
            return outcome
        except Exception:
            await self._discard_failed(epoch)
            raise

    async def complete_second_factor(self, temp_token: str, code: str) -> UserProfile:
        epoch = self._epoch
        try:
            bundle = await self.backend.complete_second_factor(temp_token, code)
            await self._install(bundle, epoch)
            return bundle.user
        except Exception:
            await self._discard_failed(epoch)
            raise

    async def register(self, data: RegistrationData) -> UserProfile:
        epoch = self._epoch
        try:
            bundle = await self.backend.register(data)
            await self._install(bundle, epoch)
            return bundle.user
        except Exception:
            await self._discard_failed(epoch)
            raise

    async def install_token(self, token: str) -> UserProfile:
        """Adopt an externally issued token (SSO/OAuth callback).

        The previous session is torn down before the new token is checked, so
        two sessions never coexist. The token is kept only if the profile
        fetch with it succeeds.
        """
        await self._clear_auth()
        epoch = self._epoch
        try:
            user = await self.backend.fetch_current_profile(token)
            await self._install(Authenticated(token=token, user=user), epoch)
            return user
        except Exception:
            await self._discard_failed(epoch)
            raise

    async def logout(self) -> None:
        token = self._token
        self._drop_session()
        try:
            await self._remove_persisted()
        except Exception:
            logger.exception("Failed to clear persisted session")
        self._spawn(self._remote_logout(token))

    async def refresh_user(self) -> UserProfile:
        token = self._token
        if not token:
            raise NotAuthenticatedError()

        try:
            user = await self.backend.fetch_current_profile(token)
        except AuthenticationError as e:
            if e.credential_invalid and self._token == token:
                await self._clear_auth()
            raise

        if self._token != token:
            # logout or re-login happened while the request was in flight
            logger.debug("Discarding profile fetched with a superseded token")
            return user

        self._apply_user(user)
        await self.store.set(AUTH_USER_KEY, self._dump_user())
        return user

    # ==================== auto refresh ====================

    def start_auto_refresh(self) -> None:
        self.stop_auto_refresh()
        self._refresh_task = asyncio.create_task(self._refresh_loop())

    def stop_auto_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        # a tick that signs the session out must finish its own teardown
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _refresh_loop(self) -> None:
        me = asyncio.current_task()
        while True:
            await asyncio.sleep(self.refresh_interval)
            if self._refresh_task is not me or not self._token:
                return
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.refresh_user()
        except AuthenticationError as e:
            if e.credential_invalid:
                logger.info("Session rejected by backend, signed out")
            else:
                logger.warning("Auto-refresh user failed: %s", e)
        except Exception as e:
            logger.warning("Auto-refresh user failed: %s", e)

    async def close(self) -> None:
        """Stop the refresh task and wait for fire-and-forget work."""
        task = self._refresh_task
        self.stop_auto_refresh()
        pending = [t for t in (task, *self._background) if t is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ==================== internals ====================

    def _apply_user(self, user: UserProfile) -> None:
        if user.run_mode:
            self._run_mode = user.run_mode
        self._user = user

    def _dump_user(self) -> str:
        # run_mode is held separately and not persisted
        return self._user.model_dump_json(exclude={"run_mode"})

    async def _install(self, bundle: Authenticated, epoch: int) -> None:
        if self._epoch != epoch:
            logger.debug("Discarding session that finished after a newer state change")
            return
        await self._set_auth(bundle)

    async def _discard_failed(self, epoch: int) -> None:
        if self._epoch == epoch:
            await self._clear_auth()

    async def _set_auth(self, bundle: Authenticated) -> None:
        self._epoch += 1
        self._token = bundle.token
        self._apply_user(bundle.user)

        await self.store.set(AUTH_TOKEN_KEY, bundle.token)
        await self.store.set(AUTH_USER_KEY, self._dump_user())

        self.start_auto_refresh()

    def _drop_session(self) -> None:
        self._epoch += 1
        self.stop_auto_refresh()
        self._token = None
        self._user = None
        self._run_mode = RunMode.STANDARD

    async def _remove_persisted(self) -> None:
        await self.store.remove(AUTH_TOKEN_KEY)
        await self.store.remove(AUTH_USER_KEY)

    async def _clear_auth(self) -> None:
        self._drop_session()
        await self._remove_persisted()

    async def _remote_logout(self, token: Optional[str]) -> None:
        try:
            await self.backend.logout(token)
        except Exception:
            logger.exception("Remote logout failed")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
