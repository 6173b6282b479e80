"""
Password hashing (Argon2 via passlib) and signed access tokens (python-jose).

Token settings come from config; the signing key itself is resolved here so a
missing key can fall back to a throwaway one outside production.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from time_utils import utc_now

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

TOKEN_TYPE = "access"


def _resolve_secret_key() -> str:
    if config.JWT_SECRET_KEY:
        return config.JWT_SECRET_KEY
    if config.is_production_like():
        raise ValueError(
            f"JWT_SECRET_KEY must be set when ENVIRONMENT={config.ENVIRONMENT}"
        )
    # Tokens signed with a generated key stop verifying after a restart
    logger.warning("⚠️  JWT_SECRET_KEY not set, signing tokens with a temporary key")
    return "dev-" + secrets.token_urlsafe(32)


SECRET_KEY = _resolve_secret_key()


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password against a stored hash; an unreadable hash never matches."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.info("Stored password hash could not be parsed")
        return False


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token carrying data plus expiry and token type.

    Args:
        data: Claims to embed, normally sub (user id as a string) and role
        expires_delta: Lifetime override; a negative delta gives a token that
            is already expired

    Returns:
        Encoded JWT string
    """
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = utc_now() + lifetime

    claims = dict(data, exp=expire, type=TOKEN_TYPE)
    logger.debug(f"Issuing token for sub={data.get('sub')} valid until {expire}")
    return jwt.encode(claims, SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the claims of a correctly signed, unexpired token, else None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"Token rejected: {e}")
        return None
