"""
Service dependencies for FastAPI routes.

Each route receives its collaborators through ``Depends`` so tests can swap
them via ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status

from lessonpack.services.credentials import (
    PublishConfig,
    PublishConfigurationError,
    load_publish_config,
)
from lessonpack.services.llm_client import ChatCompletionClient
from lessonpack.services.pipeline import LessonPackPipeline
from lessonpack.services.publisher import bind_publisher

logger = logging.getLogger(__name__)


async def get_chat_client() -> ChatCompletionClient:
    """Chat-completions client configured from settings."""
    return ChatCompletionClient()


async def get_publish_config() -> PublishConfig:
    """Resolved publishing configuration. Raises 503 if it is malformed."""
    try:
        return load_publish_config()
    except PublishConfigurationError as exc:
        logger.error("Publishing configuration invalid: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Publishing configuration invalid: {exc}",
        )


async def get_pipeline(
    publish_config: PublishConfig = Depends(get_publish_config),
) -> LessonPackPipeline:
    """A pipeline wired to the live generation endpoint and publisher.

    Credentials are loaded here, so a missing token file is a 503 rather than
    a batch that fails every file at the publish step.
    """
    try:
        publish = bind_publisher(publish_config)
    except PublishConfigurationError as exc:
        logger.error("Publishing credentials unusable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Publishing configuration invalid: {exc}",
        )
    return LessonPackPipeline(publish=publish)
