"""Bearer-secret check for operator endpoints."""

import secrets
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import get_settings

security = HTTPBearer(auto_error=False)


async def verify_sync_secret(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """Require ``Authorization: Bearer <sync_webhook_secret>`` when a secret is set."""
    secret = get_settings().sync_webhook_secret
    if not secret:
        return

    if credentials is None or not secrets.compare_digest(credentials.credentials, secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing sync secret",
            headers={"WWW-Authenticate": "Bearer"},
        )
