from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.security import decode_token
from app.models import Profile
from app.services.graph import SocialGraphService

bearer_scheme = HTTPBearer(auto_error=False)


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_id_from_token(token: str) -> Optional[int]:
    """Subject of a verified token as a profile ID, or None."""
    payload = decode_token(token)
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[Profile]:
    """Authenticated profile, or None for anonymous requests."""
    if credentials is None:
        return None

    user_id = user_id_from_token(credentials.credentials)
    if user_id is None:
        raise _credentials_error("Invalid authentication token")

    profile = await SocialGraphService(db).get_profile(user_id)
    if profile is None:
        raise _credentials_error("User not found")
    return profile


async def get_current_user(
    current_user: Optional[Profile] = Depends(get_current_user_optional),
) -> Profile:
    if current_user is None:
        raise _credentials_error("Not authenticated")
    return current_user
