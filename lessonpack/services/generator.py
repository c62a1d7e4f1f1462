"""
Structured generation: coerce a chat model into schema-valid JSON.

Public API
----------
StructuredGenerator.generate(request) -> validated pydantic model
    Raises GenerationFailure when the model cannot produce valid output
    within ``request.max_attempts`` calls, or when a call returns no message.

The self-correction loop is an explicit state machine:

    AWAITING_RESPONSE -> VALIDATING -> DONE
                              |
                              +-> CORRECTING -> AWAITING_RESPONSE
                              +-> EXHAUSTED

Every pass through AWAITING_RESPONSE is one chargeable model call.
"""
from __future__ import annotations

import dataclasses
import enum
import json
import logging
from typing import Any, Dict, Generic, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

MAX_ATTEMPTS_DEFAULT = 3


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GenerationFailure(Exception):
    """Raised when structured generation cannot produce a valid value."""

    INVALID_OUTPUT = "invalid-output"
    EMPTY_RESPONSE = "empty-response"
    TRANSPORT = "transport"

    def __init__(
        self,
        reason: str,
        detail: str = "",
        raw_content: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.detail = detail
        self.raw_content = raw_content
        message = f"{reason}: {detail}" if detail else reason
        if raw_content is not None:
            message += f"\nRaw response: {raw_content[:2000]}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Request / conversation / trace
# ---------------------------------------------------------------------------

class ChatClient(Protocol):
    async def complete(
        self, model: str, messages: List[Dict[str, str]]
    ) -> Optional[Dict[str, Any]]:
        ...


@dataclasses.dataclass(frozen=True)
class GenerationRequest(Generic[T]):
    """Everything one structured generation call needs.  Immutable per call."""

    model: str
    system_prompt: str
    format_hint: str
    user_content: str
    schema: Type[T]
    max_attempts: int = MAX_ATTEMPTS_DEFAULT
    label: str = "generation"


class ConversationState:
    """Role-tagged message history for one ``generate`` call."""

    def __init__(self, request: GenerationRequest) -> None:
        system = request.system_prompt
        if request.format_hint:
            system = (
                f"{system}\n\nREQUIRED JSON FORMAT (no commentary, no extra keys):\n"
                f"{request.format_hint}"
            )
        self.messages: List[Dict[str, str]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": request.user_content},
        ]

    def add_correction(self, invalid_content: str, detail: str) -> None:
        self.messages.append({"role": "assistant", "content": invalid_content})
        self.messages.append(
            {
                "role": "user",
                "content": (
                    f"The previous JSON was invalid because: {detail}. "
                    "Reply again with strictly valid JSON that matches the required format."
                ),
            }
        )

    def snapshot(self) -> List[Dict[str, str]]:
        return [dict(m) for m in self.messages]


class GenerationState(str, enum.Enum):
    AWAITING_RESPONSE = "awaiting_response"
    VALIDATING = "validating"
    CORRECTING = "correcting"
    EXHAUSTED = "exhausted"
    DONE = "done"


@dataclasses.dataclass
class GenerationTrace:
    """State history of the most recent ``generate`` call."""

    label: str
    attempts: int = 0
    states: List[GenerationState] = dataclasses.field(default_factory=list)
    failures: List[str] = dataclasses.field(default_factory=list)

    def enter(self, state: GenerationState) -> None:
        self.states.append(state)
        if state is GenerationState.AWAITING_RESPONSE:
            self.attempts += 1

    @property
    def state(self) -> Optional[GenerationState]:
        return self.states[-1] if self.states else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def extract_message_content(message: Any) -> str:
    """
    Text of a chat message.

    ``content`` may be a plain string or a list of parts (strings or
    ``{"type": "text", "text": ...}`` dicts) concatenated in order.
    Any other shape is treated as empty.
    """
    if isinstance(message, dict):
        raw = message.get("content")
    else:
        raw = getattr(message, "content", None)

    if isinstance(raw, str):
        return raw
    if not isinstance(raw, list):
        return ""

    parts: List[str] = []
    for part in raw:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return "".join(parts)


def describe_failure(exc: Exception) -> str:
    """Human-readable reason, itemised per field for validation errors."""
    if isinstance(exc, ValidationError):
        items = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            items.append(f"{loc}: {err.get('msg', 'invalid')}")
        return "; ".join(items)
    return str(exc)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class StructuredGenerator:
    """Bounded self-correcting JSON generation against a pydantic schema."""

    def __init__(self, client: ChatClient) -> None:
        self._client = client
        self.last_trace: Optional[GenerationTrace] = None

    async def generate(self, request: GenerationRequest[T]) -> T:
        if request.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        conversation = ConversationState(request)
        trace = GenerationTrace(label=request.label)
        self.last_trace = trace

        while True:
            trace.enter(GenerationState.AWAITING_RESPONSE)
            message = await self._client.complete(request.model, conversation.snapshot())
            if message is None:
                raise GenerationFailure(
                    GenerationFailure.EMPTY_RESPONSE,
                    f"{request.label}: response did not contain a message to parse",
                )

            trace.enter(GenerationState.VALIDATING)
            content = extract_message_content(message)
            try:
                value = request.schema.model_validate(json.loads(content))
            except (ValueError, ValidationError) as exc:
                detail = describe_failure(exc)
                trace.failures.append(detail)

                if trace.attempts >= request.max_attempts:
                    trace.enter(GenerationState.EXHAUSTED)
                    logger.error(
                        "%s: invalid output after %d attempt(s): %s",
                        request.label,
                        trace.attempts,
                        detail[:300],
                    )
                    raise GenerationFailure(
                        GenerationFailure.INVALID_OUTPUT,
                        f"{request.label}: no valid JSON after "
                        f"{request.max_attempts} attempts: {detail}",
                        raw_content=content,
                    ) from exc

                trace.enter(GenerationState.CORRECTING)
                logger.warning(
                    "%s: attempt %d/%d invalid, asking for a correction: %s",
                    request.label,
                    trace.attempts,
                    request.max_attempts,
                    detail[:300],
                )
                conversation.add_correction(content, detail)
                continue

            trace.enter(GenerationState.DONE)
            if trace.attempts > 1:
                logger.info(
                    "%s: valid output on attempt %d", request.label, trace.attempts
                )
            return value
