"""Resolve the credential a task runs under."""

from __future__ import annotations

from checkreview.config import Settings
from checkreview.domain.value_objects import AiApiConfig
from checkreview.errors import DomainValidationError, ErrorCode


def resolve_ai_api_config(
    settings: Settings,
    api_key: str | None = None,
    *,
    api_url: str | None = None,
    model: str | None = None,
) -> AiApiConfig:
    """Per-call key first, then the system-wide default."""
    key = api_key or settings.ai_api_key
    if not key:
        raise DomainValidationError(
            ErrorCode.AI_CONFIG_MISSING, "no API key configured"
        )
    return AiApiConfig(
        api_key=key,
        api_url=api_url or settings.ai_api_url or None,
        model=model,
    )
