"""
Web-cron HTTP layer for Sentinel.

For hosts without a usable system cron: an external pinger requests
``GET /cron?key=...`` every minute and the request runs the scheduler
loop, exactly like ``sentinel task run``.

Quick start::

    from sentinel.api import create_app

    app = create_app()  # ready for uvicorn

Tags:
    sentinel, api, web-cron, FastAPI, transport-layer

Doc-Types:
    api-reference
"""

from sentinel.api.app import create_app

__all__ = ["create_app"]
