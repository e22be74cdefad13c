"""Pydantic request schemas used by the HTTP endpoints."""

from typing import Literal
from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    """Payload for `/auth/login`."""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class RunMigrationsIn(BaseModel):
    """Payload for `/admin/migrations/run`.

    `confirm` must be true; it is the only gate in front of schema changes.
    """
    confirm: bool = False


ExportFormat = Literal['csv', 'json']
