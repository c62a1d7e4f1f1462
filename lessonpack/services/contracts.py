"""
Output contracts for every generation stage.

A contract pairs the system instructions for a stage with the pydantic model
that validates its output.  The JSON format hint embedded in the prompt is
derived from that same model, so the prompt and the validator always agree.
Bump ``version`` whenever instructions or the model change shape; it is
logged with every generation call.

All prompts are module-level constants so they can be tuned without touching
logic code.
"""
from __future__ import annotations

import dataclasses
import json
from functools import cached_property
from typing import Dict, Type

from pydantic import BaseModel

from lessonpack.models.lesson_pack import (
    LessonPackDraft,
    NormalizedNotes,
    ResearchOutput,
    StrategistOutput,
)

_FORMAT_RULES = (
    "Every key must be present. Use [] for empty arrays and null where allowed. "
    "Return a single JSON object and nothing else."
)


# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

_NORMALIZER_PROMPT = """\
You are preparing raw debate-training notes for downstream analysis.
Clean up the extracted text: drop page furniture, repair broken lines, and
restructure it as well-formed markdown with headings and bullet lists.
Keep every substantive claim, example and citation. Derive a short,
descriptive title for the material.\
"""

_STRATEGIST_PROMPT = """\
You are a debating strategist creating structured cases for competitive debate.
Build a first-principles framework, the strongest government and opposition
cases, and extension spaces for later speakers.\
"""

_RESEARCH_PROMPT = """\
You are a research adjudicator compiling examples, weighing, and drills for
debate prep. Every example must cite at least one real, resolvable source URL.\
"""

_SYNTHESIZER_PROMPT = """\
You are compiling a complete debating lesson pack that will be handed to coaches.
Merge the preprocessor, strategist and research outputs into a single pack.
Ensure all required fields are present and cite examples appropriately: the
pack needs at least three examples in the examples bank and at least three
distinct sources.\
"""


# ---------------------------------------------------------------------------
# Contract registry
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class OutputContract:
    """A versioned description of one stage's structured output."""

    name: str
    version: int
    model: Type[BaseModel]
    instructions: str

    @cached_property
    def format_hint(self) -> str:
        schema = self.model.model_json_schema(by_alias=True)
        return json.dumps(schema, indent=2, ensure_ascii=False) + "\n\n" + _FORMAT_RULES

    @property
    def label(self) -> str:
        return f"{self.name}@v{self.version}"


NORMALIZER = OutputContract(
    name="normalizer",
    version=1,
    model=NormalizedNotes,
    instructions=_NORMALIZER_PROMPT,
)

STRATEGIST = OutputContract(
    name="strategist",
    version=2,
    model=StrategistOutput,
    instructions=_STRATEGIST_PROMPT,
)

RESEARCH = OutputContract(
    name="research",
    version=2,
    model=ResearchOutput,
    instructions=_RESEARCH_PROMPT,
)

SYNTHESIZER = OutputContract(
    name="synthesizer",
    version=3,
    model=LessonPackDraft,
    instructions=_SYNTHESIZER_PROMPT,
)

CONTRACTS: Dict[str, OutputContract] = {
    contract.name: contract
    for contract in (NORMALIZER, STRATEGIST, RESEARCH, SYNTHESIZER)
}
