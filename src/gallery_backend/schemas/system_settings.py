from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class SettingUpdate(BaseModel):
    namespace: str = Field(min_length=1, max_length=64)
    key: str = Field(min_length=1, max_length=128)
    value: Any = None


class SettingsBatchRequest(BaseModel):
    updates: list[SettingUpdate] = Field(default_factory=list)


class SettingUpdateError(BaseModel):
    namespace: str
    key: str
    error: str


class SettingsBatchResponse(BaseModel):
    success: bool
    updated: int
    errors: list[SettingUpdateError] | None = None
