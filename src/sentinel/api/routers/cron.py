"""Web-cron trigger endpoint.

Endpoints
---------
``GET /cron?key=...``: run due tasks within the time budget and return
a plain-text summary.

The key is compared in constant time.  An empty configured key disables
the endpoint (every request gets 403).
"""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Query
from fastapi.responses import PlainTextResponse

from sentinel.api.deps import Settings
from sentinel.core.errors import AuthorizationError
from sentinel.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["cron"])


def verify_webcron_key(provided: str, configured: str) -> None:
    """Raise ``AuthorizationError`` unless ``provided`` matches the configured key."""
    if not configured:
        raise AuthorizationError("Web-cron is disabled (no webcron_key configured)")
    if not hmac.compare_digest(provided.encode("utf-8"), configured.encode("utf-8")):
        raise AuthorizationError("Invalid web-cron key")


@router.get("/cron", response_class=PlainTextResponse)
def run_cron(
    settings: Settings,
    key: str = Query("", description="Web-cron secret"),
) -> PlainTextResponse:
    """Run the scheduler loop once (same as ``sentinel task run``)."""
    from sentinel.scheduling import create_runner

    try:
        verify_webcron_key(key, settings.webcron_key)
    except AuthorizationError as e:
        logger.warning("webcron.forbidden", reason=e.message)
        return PlainTextResponse("Forbidden", status_code=403)

    runner = None
    try:
        runner = create_runner(settings)
        summary = runner.run(source="webcron")
    except Exception as e:
        logger.error("webcron.failed", error=str(e), exc_info=True)
        return PlainTextResponse(f"Error: {e}", status_code=500)
    finally:
        if runner is not None:
            runner.close()

    return PlainTextResponse(summary.to_text())
