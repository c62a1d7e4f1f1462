"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from datetime import datetime, timezone
import logging

from lessonpack.models.schemas import HealthCheckResponse
from lessonpack.services.credentials import PublishConfigurationError, load_publish_config
from lessonpack.services.llm_client import ChatCompletionClient
from lessonpack.dependencies.services import get_chat_client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(client: ChatCompletionClient = Depends(get_chat_client)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with generation endpoint status and publish mode
    """
    # Check generation endpoint
    llm_status = "ok"
    try:
        if not await client.check_health():
            llm_status = "error"
    except Exception as e:
        logger.error(f"Generation endpoint health check failed: {e}")
        llm_status = "error"

    # Publishing mode ("service-account", "oauth", "none") or "error"
    try:
        publishing = load_publish_config().mode
    except PublishConfigurationError as e:
        logger.error(f"Publishing configuration check failed: {e}")
        publishing = "error"

    overall_status = "healthy" if llm_status == "ok" and publishing != "error" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        llm=llm_status,
        publishing=publishing,
        timestamp=datetime.now(timezone.utc),
    )
