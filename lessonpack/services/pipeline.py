"""
Master pipeline orchestrator: debate notes → validated lesson pack → Google Doc.

Public API
----------
LessonPackPipeline.process_document(doc)  -> FileOutcome
    Single-file pipeline: normalize → analyze (strategist ∥ research) →
    synthesize → finalize-validate → publish.

LessonPackPipeline.run_batch(paths | input_dir) -> BatchResult
    Sequential batch over every input file.  A failing file is recorded and
    the batch moves on.

finalize_pack(draft, doc) -> LessonPack
    Stamp input metadata and validate against the full LessonPack schema.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from lessonpack.config import settings
from lessonpack.models.lesson_pack import LessonPack, LessonPackDraft
from lessonpack.services.agents import AgentInput, LessonAgents
from lessonpack.services.credentials import load_publish_config
from lessonpack.services.document_loader import (
    PreparedDocument,
    discover_input_files,
    prepare_document,
)
from lessonpack.services.generator import StructuredGenerator, describe_failure
from lessonpack.services.llm_client import ChatCompletionClient
from lessonpack.services.pipeline_manager import PipelinePhase, PipelineStatus
from lessonpack.services.publisher import PublishResult, bind_publisher

logger = logging.getLogger(__name__)

PublishFn = Callable[[LessonPack], Awaitable[Optional[PublishResult]]]


class LessonPackValidationError(Exception):
    """The synthesized pack violates the full LessonPack contract."""


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class FileOutcome:
    """Result of running one input file through the pipeline."""

    file: str
    success: bool
    error: Optional[str] = None
    document_url: Optional[str] = None
    document_id: Optional[str] = None
    stage_reached: PipelinePhase = PipelinePhase.QUEUED
    processing_time_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["stage_reached"] = self.stage_reached.value
        return data


@dataclasses.dataclass
class BatchResult:
    outcomes: List[FileOutcome]

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------

def finalize_pack(draft: LessonPackDraft, doc: PreparedDocument) -> LessonPack:
    """
    Attach input metadata and re-validate against the full schema.

    Failure here means the synthesis produced internally inconsistent
    content (e.g. fewer than three sources); it is fatal for the file and
    never retried.
    """
    data = draft.model_dump(mode="json", by_alias=True)
    data["inputMetadata"] = {"filename": doc.filename, "kind": doc.kind.value}
    try:
        return LessonPack.model_validate(data)
    except ValidationError as exc:
        raise LessonPackValidationError(
            f"Lesson pack failed validation: {describe_failure(exc)}"
        ) from exc


# ---------------------------------------------------------------------------
# LessonPackPipeline
# ---------------------------------------------------------------------------

class LessonPackPipeline:
    """
    Coordinates the generation agents and the publisher.

    Publishing configuration and credentials are resolved once at
    construction; a PublishConfigurationError (malformed key, missing OAuth
    token file) is raised here, before any file is processed.
    """

    def __init__(
        self,
        agents: Optional[LessonAgents] = None,
        publish: Optional[PublishFn] = None,
    ) -> None:
        if agents is None:
            agents = LessonAgents(StructuredGenerator(ChatCompletionClient()))
        if publish is None:
            publish = bind_publisher(load_publish_config())
        self._agents = agents
        self._publish = publish

    # ------------------------------------------------------------------
    # Single-file pipeline
    # ------------------------------------------------------------------

    async def _analyze(self, agent_input: AgentInput):
        """Run strategist and research concurrently; the first failure wins."""
        strategist_task = asyncio.ensure_future(self._agents.strategize(agent_input))
        research_task = asyncio.ensure_future(self._agents.research(agent_input))
        try:
            return await asyncio.gather(strategist_task, research_task)
        except BaseException:
            for task in (strategist_task, research_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(strategist_task, research_task, return_exceptions=True)
            raise

    async def build_pack(
        self,
        doc: PreparedDocument,
        on_phase: Optional[Callable[[PipelinePhase], None]] = None,
    ) -> LessonPack:
        """Stages 1–4: everything up to a validated pack."""

        def _enter(phase: PipelinePhase, step: str) -> None:
            if on_phase is not None:
                on_phase(phase)
            logger.info("Pipeline: [%s] %s — %s", step, phase.value, doc.filename)

        initial = AgentInput(
            filename=doc.filename,
            document_text=doc.text,
            context_hint=doc.context_hint,
        )

        _enter(PipelinePhase.NORMALIZING, "1/5")
        normalized = await self._agents.normalize(initial)
        normalized_input = AgentInput(
            filename=doc.filename,
            document_text=normalized.markdown,
            context_hint=normalized.title or initial.context_hint,
        )

        _enter(PipelinePhase.ANALYZING, "2/5")
        strategist, researcher = await self._analyze(normalized_input)

        _enter(PipelinePhase.SYNTHESIZING, "3/5")
        draft = await self._agents.synthesize(normalized_input, normalized, strategist, researcher)

        _enter(PipelinePhase.VALIDATING, "4/5")
        return finalize_pack(draft, doc)

    async def process_document(
        self, doc: PreparedDocument, status: Optional[PipelineStatus] = None
    ) -> FileOutcome:
        """Run one file end to end.  Never raises; failures become outcomes."""
        t0 = time.monotonic()
        outcome = FileOutcome(file=doc.absolute_path, success=False)

        def _on_phase(phase: PipelinePhase) -> None:
            outcome.stage_reached = phase
            if status is not None:
                status.phase = phase

        try:
            pack = await self.build_pack(doc, _on_phase)

            _on_phase(PipelinePhase.PUBLISHING)
            logger.info("Pipeline: [5/5] publishing — %s", doc.filename)
            result = await self._publish(pack)

            outcome.success = True
            outcome.stage_reached = PipelinePhase.COMPLETED
            if result is not None:
                outcome.document_url = result.doc_url
                outcome.document_id = result.doc_id
        except Exception as exc:
            outcome.error = str(exc)
            logger.error(
                "Failed to process %s during %s: %s",
                doc.filename,
                outcome.stage_reached.value,
                exc,
                exc_info=True,
            )
        outcome.processing_time_seconds = round(time.monotonic() - t0, 2)
        return outcome

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def run_batch(
        self,
        paths: Optional[Sequence[str]] = None,
        input_dir: Optional[str] = None,
        status: Optional[PipelineStatus] = None,
    ) -> BatchResult:
        """Process files one after another; one file's failure never stops the batch."""
        if paths is None:
            input_dir = input_dir or settings.NOTES_INPUT_DIR
            paths = discover_input_files(input_dir)
            if not paths:
                logger.warning("No input files found in %s", input_dir)

        if status is not None:
            status.total_files = len(paths)

        outcomes: List[FileOutcome] = []
        for path in paths:
            logger.info("Processing %s …", path)
            if status is not None:
                status.current_file = path
                status.phase = PipelinePhase.LOADING

            try:
                doc = await prepare_document(path)
            except Exception as exc:
                logger.error("Failed to read %s: %s", path, exc, exc_info=True)
                outcome = FileOutcome(
                    file=path,
                    success=False,
                    error=f"Could not read input: {exc}",
                    stage_reached=PipelinePhase.LOADING,
                )
            else:
                outcome = await self.process_document(doc, status)

            outcomes.append(outcome)
            if status is not None:
                status.outcomes.append(outcome.to_dict())
                if outcome.success:
                    status.files_succeeded += 1
                else:
                    status.files_failed += 1
                    status.errors.append(f"{outcome.file}: {outcome.error}")

        result = BatchResult(outcomes=outcomes)
        if status is not None:
            status.current_file = None
            status.phase = PipelinePhase.COMPLETED
        logger.info(
            "Batch finished: %d succeeded, %d failed", result.succeeded, result.failed
        )
        return result
