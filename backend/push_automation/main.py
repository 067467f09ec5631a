"""
FastAPI application factory.

Usage:
    uvicorn push_automation.main:app
"""

import logging

from fastapi import FastAPI

from push_automation import __version__
from push_automation.api.routes import automation_rules, campaigns, events, jobs, webhooks_shopify
from push_automation.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Shopify Push Automation", version=__version__)

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(events.router)
    app.include_router(campaigns.router)
    app.include_router(automation_rules.router)
    app.include_router(jobs.router)
    app.include_router(webhooks_shopify.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
