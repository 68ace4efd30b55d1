"""
Request Dependencies.

Provides the database session, the authenticated user and the process-wide
LLM and storage clients to API endpoints.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dictatemed.core.database import get_session
from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.repositories import UserRepository
from dictatemed.core.errors import ForbiddenError, UnauthorizedError
from dictatemed.core.llm import TextGenerationClient, get_text_generation_client
from dictatemed.core.logging_config import get_logger
from dictatemed.core.security import decode_access_token
from dictatemed.core.storage import ObjectStorage, get_object_storage

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

SessionDep = Annotated[AsyncSession, Depends(get_session)]
TextClientDep = Annotated[TextGenerationClient, Depends(get_text_generation_client)]
StorageDep = Annotated[ObjectStorage, Depends(get_object_storage)]


async def get_current_user(
    session: SessionDep,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """
    Resolve the caller from the ``Authorization: Bearer`` header.

    Raises:
        UnauthorizedError: Missing or invalid token, or unknown user
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError()

    payload = decode_access_token(credentials.credentials)
    user = await UserRepository(session).get_by_id(payload["sub"])
    if user is None:
        logger.warning(f"Token subject does not match a user: {payload['sub']}")
        raise UnauthorizedError("User not found")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


async def require_admin(user: CurrentUserDep) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


AdminUserDep = Annotated[User, Depends(require_admin)]
