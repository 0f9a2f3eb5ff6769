from __future__ import annotations

import hmac
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gallery_backend.config import settings

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Viewer:
    is_admin: bool

    @property
    def authenticated(self) -> bool:
        return self.is_admin


def _token_matches(candidate: str) -> bool:
    expected = settings.admin_api_token.strip()
    if not expected:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def get_viewer(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Viewer:
    raw_token = creds.credentials if creds is not None else None
    is_admin = bool(raw_token and raw_token.strip() and _token_matches(raw_token.strip()))
    # Error handlers read this to decide how much backend detail to expose.
    request.state.is_admin = is_admin
    return Viewer(is_admin=is_admin)


async def require_admin(viewer: Viewer = Depends(get_viewer)) -> Viewer:
    if not viewer.is_admin:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="admin token required")
    return viewer
