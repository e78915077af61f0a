from collections.abc import AsyncGenerator

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from auth.application.services import verify_token
from auth.domain.entities import Identity
from shared.exceptions import AuthenticationError
from shared.infrastructure.database import async_session

security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_optional_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Identity | None:
    if credentials is None:
        return None
    claims = verify_token(credentials.credentials)
    return Identity.from_claims(claims) if claims else None


async def get_current_identity(
    identity: Identity | None = Depends(get_optional_identity),
) -> Identity:
    if identity is None:
        raise AuthenticationError("Authentication required")
    return identity
