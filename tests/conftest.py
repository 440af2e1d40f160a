"""Shared fixtures: an in-memory store and an AsyncMock auth backend."""

from unittest.mock import AsyncMock

import pytest

from authlink.app.errors import AuthenticationError
from authlink.app.models import Authenticated, SecondFactorRequired, UserProfile


class MemoryStore:
    """Dict-backed stand-in for the Redis store."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def remove(self, key):
        self.data.pop(key, None)

    async def close(self):
        pass


def make_user(user_id=1, email="admin@example.com", role="admin", run_mode=None, **extra):
    return UserProfile(id=user_id, email=email, username=email.split("@")[0], role=role, run_mode=run_mode, **extra)


def make_bundle(token="tok-a", **user_kwargs):
    return Authenticated(token=token, user=make_user(**user_kwargs))


def credential_invalid():
    return AuthenticationError("token expired", status_code=401, detail="token expired")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def backend():
    mock = AsyncMock()
    mock.login.return_value = make_bundle()
    mock.complete_second_factor.return_value = make_bundle()
    mock.register.return_value = make_bundle(token="tok-new", user_id=7, email="new@example.com", role="user")
    mock.fetch_current_profile.return_value = make_user()
    mock.logout.return_value = True
    return mock


@pytest.fixture
def second_factor():
    return SecondFactorRequired(temp_token="tmp-1", user_email_masked="a***@example.com")
