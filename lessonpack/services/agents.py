"""
The four generation roles of the lesson-pack pipeline.

Each role is a single StructuredGenerator call driven by its OutputContract.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Optional

from lessonpack.config import settings
from lessonpack.models.lesson_pack import (
    LessonPackDraft,
    NormalizedNotes,
    ResearchOutput,
    StrategistOutput,
)
from lessonpack.services.contracts import (
    NORMALIZER,
    RESEARCH,
    STRATEGIST,
    SYNTHESIZER,
    OutputContract,
)
from lessonpack.services.generator import GenerationRequest, StructuredGenerator

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class AgentModels:
    normalizer: str
    strategist: str
    research: str
    synthesizer: str

    @classmethod
    def from_settings(cls) -> "AgentModels":
        return cls(
            normalizer=settings.LLM_MODEL_NORMALIZER,
            strategist=settings.LLM_MODEL_STRATEGIST,
            research=settings.LLM_MODEL_RESEARCH,
            synthesizer=settings.LLM_MODEL_SYNTHESIZER,
        )


@dataclasses.dataclass(frozen=True)
class AgentInput:
    filename: str
    document_text: str
    context_hint: Optional[str] = None


def build_notes_prompt(agent_input: AgentInput) -> str:
    hint = f"Context hint: {agent_input.context_hint}\n\n" if agent_input.context_hint else ""
    return (
        f"Document name: {agent_input.filename}\n\n"
        f"{hint}"
        f"Source notes:\n{agent_input.document_text}"
    )


class LessonAgents:
    """Normalizer, strategist, research adjudicator and synthesizer."""

    def __init__(
        self,
        generator: StructuredGenerator,
        models: Optional[AgentModels] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._generator = generator
        self.models = models or AgentModels.from_settings()
        self.max_attempts = max_attempts or settings.LLM_MAX_ATTEMPTS

    def _request(self, contract: OutputContract, model: str, user_content: str) -> GenerationRequest:
        logger.debug("Building %s request for model %s", contract.label, model)
        return GenerationRequest(
            model=model,
            system_prompt=contract.instructions,
            format_hint=contract.format_hint,
            user_content=user_content,
            schema=contract.model,
            max_attempts=self.max_attempts,
            label=contract.label,
        )

    async def normalize(self, agent_input: AgentInput) -> NormalizedNotes:
        return await self._generator.generate(
            self._request(NORMALIZER, self.models.normalizer, build_notes_prompt(agent_input))
        )

    async def strategize(self, agent_input: AgentInput) -> StrategistOutput:
        return await self._generator.generate(
            self._request(STRATEGIST, self.models.strategist, build_notes_prompt(agent_input))
        )

    async def research(self, agent_input: AgentInput) -> ResearchOutput:
        return await self._generator.generate(
            self._request(RESEARCH, self.models.research, build_notes_prompt(agent_input))
        )

    async def synthesize(
        self,
        agent_input: AgentInput,
        normalized: NormalizedNotes,
        strategist: StrategistOutput,
        researcher: ResearchOutput,
    ) -> LessonPackDraft:
        user_content = json.dumps(
            {
                "filename": agent_input.filename,
                "contextHint": agent_input.context_hint,
                "preprocessor": normalized.model_dump(mode="json", by_alias=True),
                "strategist": strategist.model_dump(mode="json", by_alias=True),
                "researcher": researcher.model_dump(mode="json", by_alias=True),
            },
            indent=2,
            ensure_ascii=False,
        )
        return await self._generator.generate(
            self._request(SYNTHESIZER, self.models.synthesizer, user_content)
        )
