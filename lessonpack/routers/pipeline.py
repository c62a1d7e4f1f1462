"""
Pipeline orchestration endpoints.

Route summary
-------------
POST /process-all   — start a background batch over the input directory.
GET  /status        — progress and per-file outcomes of the latest batch.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from lessonpack.config import settings
from lessonpack.dependencies.services import get_pipeline
from lessonpack.models.schemas import (
    FileOutcomeResponse,
    PipelineRunRequest,
    PipelineStartResponse,
    PipelineStatusResponse,
)
from lessonpack.services.document_loader import discover_input_files
from lessonpack.services.pipeline import LessonPackPipeline
from lessonpack.services.pipeline_manager import PipelineStatus, pipeline_manager

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /process-all
# ---------------------------------------------------------------------------

@router.post(
    "/process-all",
    response_model=PipelineStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate and publish lesson packs for every input file",
)
async def process_all(
    body: Optional[PipelineRunRequest] = Body(default=None),
    pipeline: LessonPackPipeline = Depends(get_pipeline),
) -> PipelineStartResponse:
    """
    **Batch pipeline** — run every supported file in the input directory
    through normalize → analyze → synthesize → validate → publish.

    Files are processed one after another in the background; poll
    ``GET /api/pipeline/status`` for progress.  A failing file is recorded
    and the batch continues.

    Returns 409 if a batch is already running.
    """
    if pipeline_manager.is_running():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A batch is already running. Poll /api/pipeline/status for progress.",
        )

    input_dir = (body.input_dir if body else None) or settings.NOTES_INPUT_DIR
    paths = discover_input_files(input_dir)

    run_status = PipelineStatus(input_dir=input_dir, total_files=len(paths))
    try:
        pipeline_manager.start(pipeline.run_batch(paths=paths, status=run_status), run_status)
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    message = f"Started batch over {len(paths)} file(s) in {input_dir}."
    if not paths:
        message = f"No supported input files found in {input_dir}."
    logger.info("process_all: %s", message)

    return PipelineStartResponse(input_dir=input_dir, total_files=len(paths), message=message)


# ---------------------------------------------------------------------------
# GET /status
# ---------------------------------------------------------------------------

@router.get(
    "/status",
    response_model=PipelineStatusResponse,
    summary="Progress of the latest batch",
)
async def pipeline_status() -> PipelineStatusResponse:
    """Current phase, counts and per-file outcomes; ``idle`` before the first batch."""
    current = pipeline_manager.get_status()
    if current is None:
        return PipelineStatusResponse(running=False, phase="idle")

    return PipelineStatusResponse(
        running=pipeline_manager.is_running(),
        phase=current.phase.value,
        input_dir=current.input_dir,
        total_files=current.total_files,
        files_succeeded=current.files_succeeded,
        files_failed=current.files_failed,
        current_file=current.current_file,
        elapsed_seconds=current.elapsed_seconds,
        errors=list(current.errors),
        outcomes=[FileOutcomeResponse(**outcome) for outcome in current.outcomes],
    )
