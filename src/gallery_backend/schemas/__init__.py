from __future__ import annotations

from .errors import ErrorResponse
from .system_settings import (
    SettingsBatchRequest,
    SettingsBatchResponse,
    SettingUpdate,
    SettingUpdateError,
)

__all__ = [
    "ErrorResponse",
    "SettingUpdate",
    "SettingUpdateError",
    "SettingsBatchRequest",
    "SettingsBatchResponse",
]
