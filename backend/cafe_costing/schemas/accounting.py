"""Accounting snapshot schemas."""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class SnapshotSaveRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    branch_id: str = Field(min_length=1)
    snapshot_date: Optional[date] = Field(
        default=None, validation_alias=AliasChoices("snapshot_date", "date")
    )
    created_by: Optional[str] = None


class SnapshotApproveRequest(BaseModel):
    approved_by: Optional[str] = None
