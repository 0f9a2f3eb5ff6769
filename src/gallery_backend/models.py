# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SystemSetting(SQLModel, table=True):
    __tablename__ = "system_settings"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_system_settings_namespace_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    namespace: str = Field(index=True, min_length=1, max_length=64)
    key: str = Field(index=True, min_length=1, max_length=128)
    # JSON-encoded value; settings hold scalars (bool/str/number) or small objects.
    value_json: str = Field(sa_column=Column(Text, nullable=False))
    updated_by: Optional[str] = Field(default=None, max_length=128)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


# Photo and album tables are owned by the gallery CRUD service; only the columns
# the file server's visibility check reads are declared here.


class Photo(SQLModel, table=True):
    __tablename__ = "photos"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: str = Field(primary_key=True, max_length=64)
    title: Optional[str] = Field(default=None, max_length=255)
    storage_key: Optional[str] = Field(default=None, index=True, max_length=1024)
    thumbnail_key: Optional[str] = Field(default=None, index=True, max_length=1024)
    live_photo_video_key: Optional[str] = Field(default=None, index=True, max_length=1024)


class Album(SQLModel, table=True):
    __tablename__ = "albums"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(default="", max_length=255)
    is_hidden: bool = Field(default=False, index=True)


class AlbumPhoto(SQLModel, table=True):
    __tablename__ = "album_photos"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("album_id", "photo_id", name="uq_album_photos_album_id_photo_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    album_id: int = Field(index=True, foreign_key="albums.id")
    photo_id: str = Field(index=True, foreign_key="photos.id")
