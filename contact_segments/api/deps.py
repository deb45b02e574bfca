"""
FastAPI Dependencies

Provides dependency injection for database sessions and the caller's
organization.

SECURITY NOTES:
- The organization id comes only from a verified bearer token, never from
  request bodies or query strings
- JWT payloads are never logged
"""

from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError, jwt
from datetime import datetime, timedelta
import logging

from contact_segments.database import get_db
from contact_segments.config import settings

logger = logging.getLogger(__name__)


security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_organization_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> int:
    """
    Resolve the caller's organization from the ``org_id`` claim of the
    bearer token.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        raise credentials_exception

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        org_claim = payload.get("org_id")
        if org_claim is None or isinstance(org_claim, bool):
            raise credentials_exception
        organization_id = int(org_claim)
    except JWTError:
        logger.warning("JWT validation failed")
        raise credentials_exception
    except (TypeError, ValueError):
        logger.warning("Invalid org_id claim format")
        raise credentials_exception

    return organization_id


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentOrganization = Annotated[int, Depends(get_current_organization_id)]
