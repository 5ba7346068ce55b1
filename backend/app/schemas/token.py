"""Token schemas for authentication."""

import time
from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID


class TokenClass(str, Enum):
    """Token class. Never serialized into the payload; selects the key pair."""

    ACCESS = "access"
    REFRESH = "refresh"


class Claims(BaseModel):
    """Signed token payload."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    token_id: str = Field(min_length=1)  # ULID, unique per issued token
    issuer: str = Field(alias="iss")
    subject: str = Field(alias="sub")  # display/audit identity, not used for lookups
    issued_at: int = Field(alias="iat")
    expires_at: int = Field(alias="exp")

    def to_payload(self) -> dict[str, str | int]:
        return self.model_dump(by_alias=True)


def new_claims(subject: str, issuer: str, ttl: timedelta) -> Claims:
    """Build claims for a freshly issued token."""
    now = int(time.time())
    return Claims(
        token_id=str(ULID()),
        issuer=issuer,
        subject=subject,
        issued_at=now,
        expires_at=now + int(ttl.total_seconds()),
    )


class Token(BaseModel):
    """Access and refresh token pair response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshTokenRequest(BaseModel):
    """Request to refresh the token pair."""

    refresh_token: str
