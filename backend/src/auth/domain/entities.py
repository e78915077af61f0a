from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    name: str | None = field(default=None)
    email: str | None = field(default=None)
    issued_at: datetime | None = field(default=None)
    expires_at: datetime | None = field(default=None)


@dataclass(frozen=True)
class Identity:
    id: str
    name: str | None = field(default=None)
    email: str | None = field(default=None)

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "Identity":
        return cls(id=claims.subject, name=claims.name, email=claims.email)
