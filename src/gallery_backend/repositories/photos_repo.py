from __future__ import annotations

from typing import cast

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from gallery_backend.models import Album, AlbumPhoto, Photo


async def find_photo_id_by_key(
    session: AsyncSession, *, key: str, storage_key_aliases: list[str] | None = None
) -> str | None:
    """Find the photo owning ``key`` as original, thumbnail or live-photo video."""

    conditions: list[ColumnElement[bool]] = [
        cast(ColumnElement[bool], Photo.storage_key == key),
        cast(ColumnElement[bool], Photo.thumbnail_key == key),
        cast(ColumnElement[bool], Photo.live_photo_video_key == key),
    ]
    conditions.extend(
        cast(ColumnElement[bool], Photo.storage_key == alias)
        for alias in storage_key_aliases or []
    )
    stmt = select(Photo.id).where(or_(*conditions)).limit(1)
    return (await session.exec(stmt)).first()


async def is_photo_in_hidden_album(session: AsyncSession, *, photo_id: str) -> bool:
    stmt = (
        select(AlbumPhoto.id)
        .join(Album, col(AlbumPhoto.album_id) == col(Album.id))
        .where(AlbumPhoto.photo_id == photo_id)
        .where(col(Album.is_hidden).is_(True))
        .limit(1)
    )
    return (await session.exec(stmt)).first() is not None
