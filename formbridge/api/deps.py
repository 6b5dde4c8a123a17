"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from formbridge.integrations.service import FormIntegrationService


def get_service(request: Request) -> FormIntegrationService:
    """Get the integration service built during application startup."""
    return request.app.state.integration_service
