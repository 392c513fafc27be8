"""Authentication models for magic links and sessions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Session(BaseModel):
    """
    An authenticated session, decoded from the session cookie by the route
    layer and handed to services explicitly.
    """

    user_id: UUID
    issued_at: datetime
    expires_at: datetime


class SendMagicLinkRequest(BaseModel):
    """Request to send a magic link."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class SendMagicLinkResponse(BaseModel):
    """Response after requesting a magic link. Identical whether or not the account exists."""

    message: str = "If an account exists for this email, a sign-in link has been sent."


class VerifyMagicLinkRequest(BaseModel):
    """Request to verify a magic link token."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=16, max_length=128)


class LogoutResponse(BaseModel):
    """Response after logout."""

    message: str = "Logged out successfully"
