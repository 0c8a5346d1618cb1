"""Token, password and OTP helpers.

Access and refresh tokens are HS256 JWTs signed with separate secrets. Passwords
are hashed with passlib; OTPs are stored as SHA-256 digests and compared in
constant time.
"""
import hashlib
import hmac
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt
from passlib.context import CryptContext

from .config import Settings
from .errors import AuthenticationError

logger = logging.getLogger("teamtask-core.security")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

PASSWORD_SPECIAL_CHARS = "@#$%&*!"

_random = secrets.SystemRandom()


# Passwords

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def generate_password(length: int = 12) -> str:
    """
    Generate a random password for a newly verified account.

    The result contains at least one upper-case letter, one lower-case letter,
    one digit and one special character, in random order.

    Args:
        length: Total password length (minimum 4)

    Returns:
        Generated password
    """
    if length < 4:
        raise ValueError("Password length must be at least 4")

    pools = [
        string.ascii_uppercase,
        string.ascii_lowercase,
        string.digits,
        PASSWORD_SPECIAL_CHARS,
    ]
    alphabet = "".join(pools)

    chars = [secrets.choice(pool) for pool in pools]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(pools)))
    _random.shuffle(chars)
    return "".join(chars)


# OTP

def generate_otp(length: int = 6) -> str:
    """Generate a numeric one-time code of ``length`` digits."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode("utf-8")).hexdigest()


def verify_otp(otp: str, otp_hash: Optional[str]) -> bool:
    """Constant-time comparison of a submitted OTP against its stored hash."""
    if not otp_hash:
        return False
    return hmac.compare_digest(hash_otp(otp), otp_hash)


# Tokens

def _create_token(
    user_id: UUID,
    email: str,
    token_type: str,
    secret: str,
    expires_delta: timedelta,
    algorithm: str,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, secret, algorithm=algorithm)


def create_access_token(settings: Settings, user_id: UUID, email: str) -> str:
    return _create_token(
        user_id,
        email,
        ACCESS_TOKEN_TYPE,
        settings.jwt_secret,
        timedelta(minutes=settings.access_token_expire_minutes),
        settings.jwt_algorithm,
    )


def create_refresh_token(settings: Settings, user_id: UUID, email: str) -> str:
    return _create_token(
        user_id,
        email,
        REFRESH_TOKEN_TYPE,
        settings.jwt_refresh_secret,
        timedelta(days=settings.refresh_token_expire_days),
        settings.jwt_algorithm,
    )


def create_token_pair(settings: Settings, user_id: UUID, email: str) -> tuple[str, str]:
    """Return ``(access_token, refresh_token)`` for a user."""
    return (
        create_access_token(settings, user_id, email),
        create_refresh_token(settings, user_id, email),
    )


def _decode_token(token: str, secret: str, algorithm: str, token_type: str, label: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError(f"{label} has expired")
    except jwt.PyJWTError:
        raise AuthenticationError(f"Invalid {label.lower()}")

    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthenticationError(f"Invalid {label.lower()}")

    try:
        payload["sub"] = UUID(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError(f"Invalid {label.lower()}")
    return payload


def decode_access_token(settings: Settings, token: str) -> dict:
    """
    Decode and validate an access token.

    Returns:
        Token claims with ``sub`` converted to a UUID

    Raises:
        AuthenticationError: If the token is expired, malformed or of the wrong type
    """
    return _decode_token(token, settings.jwt_secret, settings.jwt_algorithm, ACCESS_TOKEN_TYPE, "Token")


def decode_refresh_token(settings: Settings, token: str) -> dict:
    """
    Decode and validate a refresh token.

    Raises:
        AuthenticationError: If the token is expired, malformed or of the wrong type
    """
    return _decode_token(
        token, settings.jwt_refresh_secret, settings.jwt_algorithm, REFRESH_TOKEN_TYPE, "Refresh token"
    )
