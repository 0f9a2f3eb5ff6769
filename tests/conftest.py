from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest

from gallery_backend.db import dispose_engine_cache
from gallery_backend.integrations.storage.object_storage import reset_storage_cache


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _reset_cached_resources(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Storage and engine are cached per process; tests repoint them via settings.
    _ = anyio_backend
    reset_storage_cache()
    yield
    reset_storage_cache()
    dispose_engine_cache()
