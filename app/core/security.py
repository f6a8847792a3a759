"""
Token security utilities
JWT issuing and verification for API access
"""

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import HTTPException, status
from config import settings

# Tolerated clock drift between token issuer and this service
CLOCK_SKEW_SECONDS = 60


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure random token"""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()

    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
        "type": "access",
        "jti": generate_secure_token(16)  # JWT ID for token tracking
    })

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token

    Expiration is checked manually with a small leeway so clock drift between
    client and server does not reject fresh tokens.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={
                "verify_signature": True,
                "verify_exp": False,
                "verify_iat": False,
                "require_exp": False,
                "require_iat": False,
            }
        )

        current_timestamp = int(datetime.now(timezone.utc).timestamp())

        exp = payload.get("exp")
        if exp is not None and current_timestamp > (exp + CLOCK_SKEW_SECONDS):
            raise JWTError("Token has expired")

        iat = payload.get("iat")
        if iat is not None and (iat - CLOCK_SKEW_SECONDS) > current_timestamp:
            raise JWTError("Token issued in the future")

        if payload.get("type") != "access":
            raise JWTError("Invalid token type")

        return payload

    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Não autenticado",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
