import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from branched.config import get_settings

settings = get_settings()


def generate_api_secret() -> str:
    """Random secret part of a new API key."""
    return secrets.token_urlsafe(32)


def hash_api_secret(secret: str) -> str:
    """Hash an API key secret for storage."""
    # Truncate to 72 bytes if needed (bcrypt limit)
    secret_bytes = secret.encode("utf-8")[:72]
    return bcrypt.hashpw(secret_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_api_secret(secret: str, hashed_secret: str) -> bool:
    """Check an API key secret against its stored hash."""
    secret_bytes = secret.encode("utf-8")[:72]
    return bcrypt.checkpw(secret_bytes, hashed_secret.encode("utf-8"))


def _verification_key() -> str:
    """Key used to verify incoming tokens.

    External identity providers sign with RS256; their PEM public key takes
    precedence over the shared secret.
    """
    if settings.jwt_public_key:
        return settings.jwt_public_key.replace("\\n", "\n")
    return settings.secret_key


def _signing_algorithm() -> str:
    """Algorithm for locally minted tokens.

    Only the shared secret is available for signing, so an asymmetric
    verification algorithm falls back to HS256.
    """
    if settings.algorithm.upper().startswith("HS"):
        return settings.algorithm
    return "HS256"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token signed with the shared secret (HMAC only)."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.access_token_expire_minutes
        )
    to_encode.update({"exp": expire})
    if settings.jwt_issuer:
        to_encode.setdefault("iss", settings.jwt_issuer)
    if settings.jwt_audience:
        to_encode.setdefault("aud", settings.jwt_audience)
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=_signing_algorithm())
    return encoded_jwt


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT access token. Returns None when invalid or expired."""
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            _verification_key(),
            algorithms=[settings.algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        return payload
    except JWTError:
        return None
