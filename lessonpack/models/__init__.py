"""Lesson-pack models and API schemas."""
from lessonpack.models.lesson_pack import (
    Argument,
    Example,
    Framework,
    GlossaryEntry,
    InputKind,
    InputMetadata,
    LessonPack,
    LessonPackDraft,
    NormalizedNotes,
    RebuttalLadder,
    ResearchOutput,
    SourceLink,
    StrategistOutput,
    Weighing,
)
from lessonpack.models.schemas import (
    FileOutcomeResponse,
    HealthCheckResponse,
    PipelineRunRequest,
    PipelineStartResponse,
    PipelineStatusResponse,
)

__all__ = [
    # Lesson-pack models
    "Argument",
    "Example",
    "Framework",
    "GlossaryEntry",
    "InputKind",
    "InputMetadata",
    "LessonPack",
    "LessonPackDraft",
    "NormalizedNotes",
    "RebuttalLadder",
    "ResearchOutput",
    "SourceLink",
    "StrategistOutput",
    "Weighing",
    # API schemas
    "FileOutcomeResponse",
    "HealthCheckResponse",
    "PipelineRunRequest",
    "PipelineStartResponse",
    "PipelineStatusResponse",
]
