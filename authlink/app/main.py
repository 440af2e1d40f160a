import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from redis.exceptions import RedisError

from .account_link import AccountLinkOrchestrator, build_extra_info
from .auth_client import AuthClient
from .config import settings
from .errors import (
    AuthLinkError,
    BackendError,
    NotAuthenticatedError,
)
from .models import Authenticated, Credentials, RegistrationData, TargetResourceKind
from .redis_repo import RedisRepo
from .session_manager import SessionManager

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

repo = RedisRepo(
    settings.REDIS_HOST,
    settings.REDIS_PORT,
    db=settings.REDIS_DB,
    prefix=settings.STORE_KEY_PREFIX,
    ttl_sec=settings.SESSION_TTL_SEC,
)
auth = AuthClient(
    settings.AUTH_BASE_URL,
    settings.HTTP_TIMEOUT_SEC,
    api_prefix=settings.API_PREFIX,
    logout_path=settings.LOGOUT_PATH,
)
manager = SessionManager(auth, repo, settings.AUTO_REFRESH_INTERVAL_SEC)
linker = AccountLinkOrchestrator(auth, lambda: manager.token)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await manager.restore()
    except RedisError as e:
        logger.warning("Session store unavailable, starting anonymous: %s", e)
    yield
    await manager.close()
    await repo.close()


app = FastAPI(title="authlink", lifespan=lifespan)


@app.exception_handler(AuthLinkError)
async def auth_link_error(request: Request, exc: AuthLinkError):
    if isinstance(exc, BackendError):
        # backend 4xx passes through, transport and malformed answers are a bad gateway
        status = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
    elif isinstance(exc, NotAuthenticatedError):
        status = 401
    else:
        status = 400
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": type(exc).__name__})


class SecondFactorIn(BaseModel):
    temp_token: str
    totp_code: str


class TokenIn(BaseModel):
    token: str


class ProxyIn(BaseModel):
    proxy_id: Optional[int] = None


class ExchangeCodeIn(BaseModel):
    code: str
    proxy_id: Optional[int] = None


class CookieAuthIn(BaseModel):
    session_keys: str
    proxy_id: Optional[int] = None


def _session_view() -> dict:
    user = manager.user
    return {
        "state": manager.state.value,
        "user": user.model_dump(mode="json") if user else None,
        "run_mode": manager.run_mode.value,
        "is_admin": manager.is_admin,
        "refresh_active": manager.refresh_active,
    }


def _require_session() -> None:
    if not manager.is_authenticated:
        raise NotAuthenticatedError()


# SESSION
@app.get("/session")
async def session_get():
    return _session_view()


@app.post("/session/login")
async def session_login(inp: Credentials):
    outcome = await manager.login(inp)
    if isinstance(outcome, Authenticated):
        return {"kind": outcome.kind, **_session_view()}
    return outcome.model_dump(mode="json")


@app.post("/session/login/2fa")
async def session_login_2fa(inp: SecondFactorIn):
    await manager.complete_second_factor(inp.temp_token, inp.totp_code)
    return _session_view()


@app.post("/session/register")
async def session_register(inp: RegistrationData):
    await manager.register(inp)
    return _session_view()


@app.post("/session/token")
async def session_token(inp: TokenIn):
    await manager.install_token(inp.token)
    return _session_view()


@app.post("/session/refresh")
async def session_refresh():
    await manager.refresh_user()
    return _session_view()


@app.post("/session/logout")
async def session_logout():
    await manager.logout()
    return _session_view()


# ACCOUNTS
@app.post("/accounts/{target_kind}/auth-url")
async def accounts_auth_url(target_kind: TargetResourceKind, inp: ProxyIn):
    _require_session()
    res = await linker.generate_authorization_url(target_kind, inp.proxy_id)
    if not res:
        return {"ok": False, "error": res.error}
    return {"ok": True, "authorization_url": res.value.authorization_url, "session_id": res.value.session_id}


@app.post("/accounts/{target_kind}/exchange-code")
async def accounts_exchange_code(target_kind: TargetResourceKind, inp: ExchangeCodeIn):
    _require_session()
    res = await linker.exchange_authorization_code(target_kind, inp.code, inp.proxy_id)
    if not res:
        return {"ok": False, "error": res.error}
    return {"ok": True, "token_info": res.value.model_dump(), "extra": build_extra_info(res.value)}


@app.post("/accounts/{target_kind}/cookie-auth")
async def accounts_cookie_auth(target_kind: TargetResourceKind, inp: CookieAuthIn):
    _require_session()
    items = []
    results = await linker.exchange_session_keys(target_kind, inp.session_keys, inp.proxy_id)
    # keys are secrets: report by position, never echo them back
    for i, (_, res) in enumerate(results, start=1):
        if res:
            items.append({"line": i, "ok": True, "token_info": res.value.model_dump(), "extra": build_extra_info(res.value)})
        else:
            items.append({"line": i, "ok": False, "error": res.error})
    return {"items": items}
