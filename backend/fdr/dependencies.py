"""Shared FastAPI dependencies for API routes."""

import secrets
from collections.abc import AsyncIterator

from fastapi import Depends, Header, HTTPException

from fdr.config import get_settings
from fdr.context import PipelineContext
from fdr.db import get_pool


def require_db() -> None:
    """FastAPI dependency that requires database availability.

    Raises HTTPException 503 if the database pool is not initialized.
    """
    try:
        get_pool()
    except RuntimeError as e:
        raise HTTPException(
            status_code=503,
            detail="Database not available. This feature requires database connection.",
        ) from e


def require_admin(
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Accept `Authorization: Bearer <ADMIN_TOKEN>` or `x-cron-secret: <CRON_SECRET>`.

    An unset token or secret never matches.
    """
    settings = get_settings()
    if settings.admin_token and authorization is not None:
        if secrets.compare_digest(
            authorization.encode(), f"Bearer {settings.admin_token}".encode()
        ):
            return
    if settings.cron_secret and x_cron_secret is not None:
        if secrets.compare_digest(x_cron_secret.encode(), settings.cron_secret.encode()):
            return
    raise HTTPException(status_code=401, detail="Unauthorized")


async def get_context(_: None = Depends(require_db)) -> AsyncIterator[PipelineContext]:
    """Build a PipelineContext for one request and close its client afterwards."""
    context = PipelineContext.from_pool(get_pool(), get_settings())
    try:
        yield context
    finally:
        await context.close()
