"""
Bearer token authentication for API endpoints.

The conversation core never manages credentials: it only needs the id of
the requesting user. Tokens are HS256 JWTs whose ``sub`` claim is that id.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status
from jose import JWTError, jwt

from threadsync.config import settings


@dataclass
class AuthenticatedUser:
    """
    The requester of an API call.

    Example:
        >>> @router.get("/threads")
        >>> def list_threads(
        ...     user: AuthenticatedUser = Depends(get_current_user),
        ...     session: Session = Depends(get_db),
        ... ):
        ...     return ConversationEngine(session).list_threads(user.id)
    """

    id: str


def create_access_token(
    user_id: str, expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed access token for a user.

    Args:
        user_id: Value for the ``sub`` claim
        expires_delta: Token lifetime (defaults to jwt_expiration_hours)

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))
    claims = {"sub": user_id, "iat": now, "exp": expire}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[str]:
    """
    Validate a token and return its subject.

    Returns:
        User id, or None if the token is invalid, expired or has no subject
    """
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None
    subject = claims.get("sub")
    return subject if isinstance(subject, str) and subject else None


def get_current_user(
    authorization: Optional[str] = Header(
        None,
        description="Bearer token identifying the requesting user",
        alias="Authorization",
    ),
) -> AuthenticatedUser:
    """
    FastAPI dependency resolving the requesting user from the bearer token.

    Raises:
        HTTPException(401): Header missing, malformed, or token invalid
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must be 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decode_access_token(token.strip())
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthenticatedUser(id=user_id)
