"""Security utilities for identity provider tokens and domain policy."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from app.core.config import settings


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as asserted by the identity provider."""

    subject: str
    email: str | None
    email_verified: bool = True

    @property
    def is_institutional(self) -> bool:
        """True when the verified email belongs to the institutional domain."""
        return is_institutional_email(self.email) and self.email_verified


def is_institutional_email(email: str | None, domain: str | None = None) -> bool:
    """Check an email against the configured institutional suffix."""
    if not email:
        return False
    suffix = (domain or settings.ALLOWED_EMAIL_DOMAIN).lower()
    return email.strip().lower().endswith(suffix)


def create_access_token(
    subject: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token, used by the CLI and tests."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=60)

    to_encode: dict[str, Any] = {
        "sub": subject,
        "email": email,
        "email_verified": True,
        "exp": expire,
    }
    if settings.JWT_AUDIENCE:
        to_encode["aud"] = settings.JWT_AUDIENCE

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
        return payload
    except JWTError:
        return None


def principal_from_token(token: str) -> Principal | None:
    """Verify a bearer token and build the principal it describes."""
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        return None
    return Principal(
        subject=str(payload["sub"]),
        email=payload.get("email"),
        email_verified=bool(payload.get("email_verified", True)),
    )
