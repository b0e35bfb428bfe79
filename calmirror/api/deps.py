"""Shared request dependencies."""

import secrets

import aiosqlite
from fastapi import HTTPException, Request, status

from calmirror.config import get_settings


def get_db(request: Request) -> aiosqlite.Connection:
    """The connection owned by the application lifespan."""
    return request.app.state.db


def require_admin(request: Request) -> None:
    """Check the bearer token against ADMIN_API_TOKEN."""
    expected = get_settings().admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API disabled (ADMIN_API_TOKEN not set)",
        )

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
