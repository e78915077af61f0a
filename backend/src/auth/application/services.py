import logging
from datetime import datetime, timedelta, timezone

import jwt

from auth.domain.entities import Identity, TokenClaims
from shared.config import settings
from shared.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


def verify_token(token: str) -> TokenClaims | None:
    """Validate signature and expiry and return the claims, or None if unusable."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
    except jwt.PyJWTError:
        return None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        return None

    return TokenClaims(
        subject=subject,
        name=_optional_str(payload.get("name")),
        email=_optional_str(payload.get("email")),
        issued_at=_timestamp(payload.get("iat")),
        expires_at=_timestamp(payload.get("exp")),
    )


def authenticate_connection(token: str | None, document_key: str) -> Identity:
    """Gate for collaboration connections. Raises AuthenticationError on rejection."""
    if not token:
        logger.warning(
            "collab_connection_rejected",
            extra={"document_key": document_key, "reason": "missing_token"},
        )
        raise AuthenticationError("Unauthorized: no token provided")

    claims = verify_token(token)
    if claims is None:
        logger.warning(
            "collab_connection_rejected",
            extra={"document_key": document_key, "reason": "invalid_token"},
        )
        raise AuthenticationError("Unauthorized: invalid token")

    identity = Identity.from_claims(claims)
    logger.info(
        "collab_connection_accepted",
        extra={
            "document_key": document_key,
            "user_id": identity.id,
            "user_name": identity.name,
        },
    )
    return identity


def create_token(
    subject: str,
    name: str | None = None,
    email: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Issue a token signed with the shared secret (development and tests)."""
    now = datetime.now(timezone.utc)
    minutes = settings.JWT_EXPIRATION_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    if name is not None:
        payload["name"] = name
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _timestamp(value: object) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None
