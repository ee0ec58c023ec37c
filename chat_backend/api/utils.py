"""
JWT utilities for issuing and verifying access tokens.

Functions
---------
create_access_token(data: dict, settings) -> str
    Creates a signed JWT access token with an expiration (`exp`) claim.
verify_token(token: str, settings) -> Identity | None
    Verify a JWT's signature & expiration and return the caller identity.
resolve_identity(token, authorization, settings) -> Identity
    Read the token from the `token` cookie or an `Authorization: Bearer` header.

Environment contract (from `settings`)
--------------------------------------
SECRET_KEY : str
    HMAC signing key for JWTs.
ALGORITHM : str
    JWT signing algorithm (e.g., "HS256").
ACCESS_TOKEN_EXPIRE_MINUTES : int
    Token lifetime window in minutes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from jose import jwt, JWTError

from chat_backend.api.models import UserRole
from chat_backend.database.config.config import Settings
from chat_backend.orchestrator.errors import Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""
    user_id: UUID
    role: UserRole


def create_access_token(data: dict, settings: Settings) -> str:
    """
    Create a signed JWT access token.

    Parameters
    ----------
    data : dict
        Claims to embed in the token (``sub`` = user UUID, ``role``).

    Notes
    ----------
    - Adds an `exp` (expiration) claim calculated from ACCESS_TOKEN_EXPIRE_MINUTES.
    - Uses `settings.SECRET_KEY` and `settings.ALGORITHM` for signing.
    """
    encoding = data.copy()
    # exp is a NumericDate (seconds since epoch)
    expires = int(datetime.now().timestamp()) + (int(settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60)
    encoding.update({"exp": expires})
    return jwt.encode(encoding, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str, settings: Settings) -> Identity | None:
    """
    Verify a JWT and return the identity it carries.

    Returns ``None`` on any JWTError (invalid signature, expired, malformed)
    or when ``sub`` is not a UUID. Unknown roles fall back to ``guest``.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.info("Rejected access token: %s", e)
        return None
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        return None
    try:
        role = UserRole(payload.get("role", UserRole.GUEST.value))
    except ValueError:
        role = UserRole.GUEST
    return Identity(user_id=user_id, role=role)


def resolve_identity(token: str | None, authorization: str | None, settings: Settings) -> Identity:
    """
    Identity from the cookie token, else from a bearer header.

    Raises
    ------
    Unauthenticated
        No token or an invalid one.
    """
    if not token and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise Unauthenticated("missing access token")
    identity = verify_token(token, settings)
    if identity is None:
        raise Unauthenticated("invalid access token")
    return identity
