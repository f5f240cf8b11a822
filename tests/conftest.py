"""Shared fixtures for the face match tests."""

from __future__ import annotations

import pytest

from facematch.database import close_db, create_engine, create_session_maker, init_db
from facematch.schemas import ProviderConfig

from fakes import make_provider, png_bytes


@pytest.fixture
def local_provider() -> ProviderConfig:
    return make_provider()


@pytest.fixture
def red_png() -> bytes:
    return png_bytes((200, 30, 30))


@pytest.fixture
def blue_png() -> bytes:
    return png_bytes((20, 40, 220))


@pytest.fixture
async def session_maker():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield create_session_maker(engine)
    await close_db(engine)
