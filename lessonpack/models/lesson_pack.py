"""
Pydantic models for lesson packs and for the intermediate outputs of each
generation stage.

The wire format produced by the generation service is camelCase JSON; every
model accepts either the camelCase alias or the snake_case attribute name.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InputKind(str, Enum):
    """Closed set of input document kinds."""

    PDF = "pdf"
    MARKDOWN = "markdown"
    TRANSCRIPT = "transcript"
    RAW_NOTES = "raw-notes"


class _PackModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

class SourceLink(_PackModel):
    """A citation backing an example."""

    title: str
    url: str
    note: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not a valid http(s) URL: {value!r}")
        return value.strip()


class Example(_PackModel):
    """Atomic real-world example with provenance."""

    label: str  # e.g. "Singapore POFMA (2019–)"
    what_happened: str = Field(alias="whatHappened")
    why_it_matters: str = Field(alias="whyItMatters")
    how_to_use: List[str] = Field(alias="howToUse")
    sources: List[SourceLink] = Field(min_length=1)


class Argument(_PackModel):
    claim: str
    mechanism: str  # how the world changes
    impacts: List[str] = Field(min_length=1)
    stakeholders: Optional[List[str]] = None
    comparative: Optional[str] = None  # vs. the other world / status quo
    preempts: Optional[List[str]] = None
    examples: Optional[List[Example]] = None


class Framework(_PackModel):
    burden: str  # what must be proven
    metric: str  # how to weigh
    assumptions: List[str]
    theories: List[str]
    tests: Optional[List[str]] = None


class Weighing(_PackModel):
    method: str
    adjudicator_notes: List[str] = Field(alias="adjudicatorNotes")
    common_pitfalls: List[str] = Field(alias="commonPitfalls")
    poi_advice: Optional[List[str]] = Field(default=None, alias="POIAdvice")
    whip_advice: Optional[List[str]] = Field(default=None, alias="whipAdvice")


class RebuttalLadder(_PackModel):
    target: str  # the argument it targets
    ladder: List[str]  # stepwise refutation


class GlossaryEntry(_PackModel):
    term: str
    definition: str = Field(alias="def")


class InputMetadata(_PackModel):
    filename: Optional[str] = None
    kind: Optional[InputKind] = None


# ---------------------------------------------------------------------------
# Stage outputs
# ---------------------------------------------------------------------------

class NormalizedNotes(_PackModel):
    """Normalize stage: derived title plus cleaned markdown body."""

    title: str
    markdown: str


class StrategistOutput(_PackModel):
    """Analyze-A: framework and both argument cases."""

    motion_or_topic: Optional[str] = Field(default=None, alias="motionOrTopic")
    context: Optional[str] = None
    first_principles: Framework = Field(alias="firstPrinciples")
    gov_case: List[Argument] = Field(alias="govCase", min_length=2, max_length=6)
    opp_case: List[Argument] = Field(alias="oppCase", min_length=2, max_length=6)
    extensions: List[str] = Field(min_length=2, max_length=6)


class ResearchOutput(_PackModel):
    """Analyze-B: examples bank, weighing and drills."""

    examples_bank: List[Example] = Field(alias="examplesBank", min_length=3, max_length=6)
    weighing: Weighing
    drills: List[str] = Field(min_length=2, max_length=4)


class LessonPackDraft(_PackModel):
    """
    Synthesis output.

    Same shape as ``LessonPack`` minus ``inputMetadata`` and without the
    cross-field minimums, which are only enforced once the draft is stamped
    with its input metadata and finalized.
    """

    title: str
    motion_or_topic: Optional[str] = Field(default=None, alias="motionOrTopic")
    context: Optional[str] = None
    first_principles: Framework = Field(alias="firstPrinciples")
    gov_case: List[Argument] = Field(alias="govCase")
    opp_case: List[Argument] = Field(alias="oppCase")
    counter_cases: Optional[List[Argument]] = Field(default=None, alias="counterCases")
    extensions: List[str]
    rebuttal_ladders: Optional[List[RebuttalLadder]] = Field(
        default=None, alias="rebuttalLadders"
    )
    weighing: Weighing
    drills: List[str]
    glossary: Optional[List[GlossaryEntry]] = None
    examples_bank: List[Example] = Field(alias="examplesBank")
    sources: List[SourceLink]


# ---------------------------------------------------------------------------
# Final record
# ---------------------------------------------------------------------------

class LessonPack(LessonPackDraft):
    """The validated lesson pack handed to the renderer and publisher."""

    gov_case: List[Argument] = Field(alias="govCase", min_length=1)
    opp_case: List[Argument] = Field(alias="oppCase", min_length=1)
    examples_bank: List[Example] = Field(alias="examplesBank", min_length=3)
    sources: List[SourceLink] = Field(min_length=3)
    input_metadata: InputMetadata = Field(alias="inputMetadata")

    def resolve_title(self) -> str:
        """Display name for the published document."""
        if self.title:
            return self.title
        if self.motion_or_topic:
            return self.motion_or_topic
        if self.input_metadata.filename:
            return f"Lesson Pack – {self.input_metadata.filename}"
        return "Lesson Pack"
