"""
Chat-completions client for the generation service.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (OpenAI, a
local Ollama ``/v1`` endpoint, …) with JSON-object response mode.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from lessonpack.config import settings
from lessonpack.services.generator import GenerationFailure

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """
    Thin async wrapper over ``POST {base_url}/chat/completions``.

    Limits concurrency to MAX_CONCURRENT simultaneous calls.  Transport
    problems (timeouts, connection failures, non-200 responses) raise
    ``GenerationFailure("transport")`` and are never retried here.
    """

    MAX_CONCURRENT: int = 2

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.timeout = httpx.Timeout(float(timeout or settings.LLM_TIMEOUT), connect=10.0)
        self._transport = transport
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self, model: str, messages: List[Dict[str, str]]
    ) -> Optional[Dict[str, Any]]:
        """
        Issue one completion and return the first choice's message dict,
        or ``None`` when the response carries no message.
        """
        payload = {
            "model": model,
            "response_format": {"type": "json_object"},
            "messages": messages,
        }
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    resp = await client.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=self._headers(),
                    )
            except httpx.TimeoutException as exc:
                logger.error("complete: request timed out (%s)", model)
                raise GenerationFailure(
                    GenerationFailure.TRANSPORT, f"request to {model} timed out"
                ) from exc
            except httpx.HTTPError as exc:
                logger.error("complete: transport error — %s", exc)
                raise GenerationFailure(GenerationFailure.TRANSPORT, str(exc)) from exc

        if resp.status_code != 200:
            logger.error(
                "complete: generation service returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            raise GenerationFailure(
                GenerationFailure.TRANSPORT,
                f"HTTP {resp.status_code} from generation service",
            )

        try:
            body = resp.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            logger.warning("complete: response body is %s, not an object", type(body).__name__)
            return None

        choices = body.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        return choices[0].get("message")

    async def check_health(self) -> bool:
        """True if the generation endpoint answers its model listing."""
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.get(f"{self.base_url}/models", headers=self._headers())
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("check_health: generation endpoint unreachable — %s", exc)
            return False
