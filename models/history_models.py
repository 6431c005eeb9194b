"""
Salesmap Attribution Hub — History & Attribution Models
=========================================================

Pydantic models for upstream history records and the attribution facts
derived from them.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    """CRM entity kinds that expose a change-history endpoint."""
    PEOPLE = "people"
    ORGANIZATION = "organization"

    @property
    def list_key(self) -> str:
        """Key holding the record list in upstream responses."""
        return f"{self.value}HistoryList"

    @property
    def id_key(self) -> str:
        """Key holding the owning entity's ID on each record."""
        return f"{self.value}Id"


# ─── Upstream Records ───────────────────────────────────────

class HistoryRecord(BaseModel):
    """One field-change event as recorded by the CRM."""
    model_config = ConfigDict(frozen=True)

    id: str
    entity_id: str
    type: Optional[str] = None
    field_name: Optional[str] = None
    field_value: Any = None
    owner_id: Optional[str] = None
    created_at: datetime


# ─── Derived Attribution ────────────────────────────────────

class UTMTouch(BaseModel):
    """A UTM parameter snapshot rebuilt from separate field-change events."""
    model_config = ConfigDict(frozen=True)

    created_at: datetime
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    content: Optional[str] = None


class AttributionSummary(BaseModel):
    """Attribution facts derived for one entity."""
    utm_touches: List[UTMTouch] = Field(default_factory=list)
    first_touch: Optional[UTMTouch] = None
    deal_created_at: Optional[datetime] = None
    pre_deal_touch: Optional[UTMTouch] = None
    conversion_days: Optional[int] = None


class EntityIdentity(BaseModel):
    """Identity fields resolved from an entity's history."""
    entity_id: str
    name: Optional[str] = None
    email: Optional[str] = None


# ─── API Responses ──────────────────────────────────────────

class EntityListItem(BaseModel):
    """Row of the entity browse list."""
    entity_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    record_count: int = 0
    has_utm: bool = False


class EntityAttribution(BaseModel):
    """Attribution detail for one entity as returned by the API."""
    identity: EntityIdentity
    summary: AttributionSummary
    history: List[dict] = Field(default_factory=list)
