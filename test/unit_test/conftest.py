"""
Shared fixtures for unit tests.

Every test gets a fresh in-memory SQLite database, a practice with two
clinicians, a scripted text generation client and an in-memory S3 stand-in
for ``ObjectStorage``.
"""

import io
from typing import AsyncGenerator, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.pool import StaticPool

from dictatemed.core.database.entities.practices import Practice, User
from dictatemed.core.database.utils import create_all
from dictatemed.core.errors import ExternalServiceError
from dictatemed.core.llm import TextGenerationClient, TextGenerationRequest, TextGenerationResponse
from dictatemed.core.models.domain.enums import Subspecialty, UserRole
from dictatemed.core.storage import ObjectStorage
from dictatemed.domains.style.profile_service import clear_profile_cache
from dictatemed.server.core.config import settings

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeTextGenerationClient(TextGenerationClient):
    """Returns scripted responses in order and records every request."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None) -> None:
        self.responses: List[Union[str, Exception]] = list(responses or [])
        self.requests: List[TextGenerationRequest] = []

    def queue(self, *responses: Union[str, Exception]) -> None:
        self.responses.extend(responses)

    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResponse:
        self.requests.append(request)
        if not self.responses:
            raise ExternalServiceError("llm", "no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return TextGenerationResponse(content=response, input_tokens=100, output_tokens=50, model_id=request.model_id)


class FakeS3Client:
    """The subset of the boto3 S3 client that ``ObjectStorage`` calls."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_deletes = False

    def generate_presigned_url(self, operation: str, Params: dict, ExpiresIn: int) -> str:
        return f"http://mock-s3/{Params['Bucket']}/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def get_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "Not found"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "DeleteObject")
        self.objects.pop(Key, None)
        self.deleted.append(Key)
        return {}


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_all(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(name="session")
async def session_fixture(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a new session for each test."""
    async_session_maker = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session_maker() as session:  # type: ignore[attr-defined]
        yield session


@pytest.fixture(autouse=True)
def _reset_profile_cache():
    clear_profile_cache()
    yield
    clear_profile_cache()


@pytest_asyncio.fixture
async def practice(session: AsyncSession) -> Practice:
    practice = Practice(name="Harbour Heart Clinic")
    session.add(practice)
    await session.commit()
    await session.refresh(practice)
    return practice


@pytest_asyncio.fixture
async def user(session: AsyncSession, practice: Practice) -> User:
    user = User(email="sarah.chen@harbourheart.test", name="Dr Sarah Chen", practice_id=practice.id)
    user.set_subspecialties([Subspecialty.INTERVENTIONAL.value])
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(session: AsyncSession, practice: Practice) -> User:
    admin = User(email="admin@harbourheart.test", name="Practice Admin", role=UserRole.ADMIN, practice_id=practice.id)
    session.add(admin)
    await session.commit()
    await session.refresh(admin)
    return admin


@pytest_asyncio.fixture
async def colleague(session: AsyncSession, practice: Practice) -> User:
    """Another clinician in the same practice."""
    other = User(email="james.patel@harbourheart.test", name="Dr James Patel", practice_id=practice.id)
    session.add(other)
    await session.commit()
    await session.refresh(other)
    return other


@pytest_asyncio.fixture
async def outsider(session: AsyncSession) -> User:
    """A clinician from a different practice."""
    other_practice = Practice(name="Northside Cardiology")
    session.add(other_practice)
    await session.commit()
    other = User(email="lee@northside.test", name="Dr Lee Wong", practice_id=other_practice.id)
    session.add(other)
    await session.commit()
    await session.refresh(other)
    return other


@pytest.fixture
def llm_client() -> FakeTextGenerationClient:
    return FakeTextGenerationClient()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def storage(s3_client: FakeS3Client) -> ObjectStorage:
    return ObjectStorage(settings.storage, client=s3_client)
