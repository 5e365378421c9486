"""
Shared FastAPI dependencies for the delivery pipeline.
"""
from typing import Optional

from fastapi import Request

from .config import get_settings
from .responses import ApiException
from .worker.provider import DeliveryProvider, ResendProvider
from .worker.renderer import TemplateCache


def build_provider(settings=None) -> DeliveryProvider:
    """Resend provider from settings. Raises ValueError without an API key."""
    settings = settings or get_settings()
    return ResendProvider(
        api_key=settings.resend_api_key,
        api_url=settings.resend_api_url,
        timeout=settings.provider_timeout_seconds,
    )


def get_provider() -> DeliveryProvider:
    try:
        return build_provider()
    except ValueError as e:
        raise ApiException(503, str(e), "PROVIDER_NOT_CONFIGURED")


def get_template_cache(request: Request) -> Optional[TemplateCache]:
    """The app-wide template cache, created in the lifespan handler."""
    return getattr(request.app.state, "template_cache", None)
