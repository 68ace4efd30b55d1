from typing import AsyncGenerator, Dict
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database.entities.practices import User
from dictatemed.core.security import create_access_token


def bearer(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def auth_headers(user: User) -> Dict[str, str]:
    return bearer(user)


@pytest.fixture
def admin_headers(admin_user: User) -> Dict[str, str]:
    return bearer(admin_user)


@pytest.fixture
def colleague_headers(colleague: User) -> Dict[str, str]:
    return bearer(colleague)


@pytest_asyncio.fixture(name="client")
async def client_fixture(session: AsyncSession, llm_client, storage) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from dictatemed.core.database import get_session
    from dictatemed.core.llm import get_text_generation_client
    from dictatemed.core.storage import get_object_storage
    from dictatemed.server.main import app

    async def get_session_override() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_text_generation_client] = lambda: llm_client
    app.dependency_overrides[get_object_storage] = lambda: storage

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    with patch("dictatemed.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()
