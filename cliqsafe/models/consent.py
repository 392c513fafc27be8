"""Parent consent models: the durable record of safety acknowledgements."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ParentConsent(BaseModel):
    """Represents a row in the parent_consents table. One per (parent, child)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_id: UUID
    child_id: UUID
    red_alert_accepted: bool
    silent_monitoring_enabled: bool
    consent_timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None


class ConsentUpdate(BaseModel):
    """Re-consent by a linked parent. Omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    red_alert_accepted: bool | None = None
    silent_monitoring_enabled: bool | None = None


class ConsentCheck(BaseModel):
    has_consent: bool
    reason: str
