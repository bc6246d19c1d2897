"""
FastAPI dependency injection for the web-cron endpoint.

Tests override :func:`get_settings` (``app.dependency_overrides``) to point
the endpoint at a temporary database and key.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from sentinel.core.settings import SentinelSettings
from sentinel.core.settings import get_settings as _load_settings


def get_settings() -> SentinelSettings:
    """Process settings (cached by ``sentinel.core.settings``)."""
    return _load_settings()


Settings = Annotated[SentinelSettings, Depends(get_settings)]
