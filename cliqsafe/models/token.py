"""Token models for magic links, parent-approval links and invite codes."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

TokenKind = Literal["magic_link", "approval_link", "invite_code"]


class Token(BaseModel):
    """Core token model. Represents a row in the tokens table. Never holds the raw secret."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: TokenKind
    secret_hash: str
    subject_id: UUID
    context_id: UUID | None = None
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_consumed(self) -> bool:
        return self.consumed_at is not None


class IssuedToken(BaseModel):
    """Returned once at issuance. The raw secret is not retrievable afterwards."""

    id: UUID
    kind: TokenKind
    raw_secret: str
    subject_id: UUID
    context_id: UUID | None = None
    expires_at: datetime


class ConsumedToken(BaseModel):
    """What a successful redemption binds the caller to."""

    token_id: UUID
    kind: TokenKind
    subject_id: UUID
    context_id: UUID | None = None
    consumed_at: datetime
