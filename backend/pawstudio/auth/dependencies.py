"""
FastAPI dependencies for authentication.

Sessions are issued by the identity layer and stored in the `sessions`
table. A request is authenticated when it carries a token (Bearer header or
session cookie) that matches an unexpired session.
"""
from datetime import datetime
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawstudio.config import settings
from pawstudio.database import get_db
from pawstudio.errors import AuthenticationError, AuthorizationError
from pawstudio.models.auth_session import AuthSession
from pawstudio.models.user import User

# auto_error=False so cookie-only requests reach the dependency
security = HTTPBearer(auto_error=False)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        # Signed cookies carry "<token>.<signature>"
        return token.split(".")[0]
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    FastAPI dependency that resolves the session token to a User.

    Raises:
        AuthenticationError: If the token is missing, unknown or expired
    """
    token = _extract_token(request, credentials)
    if not token:
        raise AuthenticationError("Missing authentication token")

    result = await db.execute(
        select(User)
        .join(AuthSession, AuthSession.user_id == User.id)
        .where(AuthSession.token == token)
        .where(AuthSession.expires_at > datetime.utcnow())
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise AuthenticationError("Invalid or expired session")

    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    Raises:
        AuthorizationError: If the user is not an admin
    """
    if not user.is_admin:
        raise AuthorizationError("Insufficient permissions")
    return user
