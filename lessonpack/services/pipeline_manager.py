"""
In-memory singleton that tracks background batch runs.

Usage
-----
    from lessonpack.services.pipeline_manager import pipeline_manager, PipelineStatus

    status = PipelineStatus(input_dir=input_dir)
    pipeline_manager.start(pipeline.run_batch(input_dir=input_dir, status=status), status)
    # ... later ...
    current = pipeline_manager.get_status()
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Any, Coroutine, Dict, List, Optional

from lessonpack.utils.helpers import truncate_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pipeline phase enum
# ---------------------------------------------------------------------------

class PipelinePhase(str, enum.Enum):
    QUEUED = "queued"
    LOADING = "loading"
    NORMALIZING = "normalizing"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Pipeline status (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class PipelineStatus:
    input_dir: Optional[str] = None
    phase: PipelinePhase = PipelinePhase.QUEUED
    total_files: int = 0
    files_succeeded: int = 0
    files_failed: int = 0
    current_file: Optional[str] = None
    errors: List[str] = dataclasses.field(default_factory=list)
    outcomes: List[Dict[str, Any]] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)


# ---------------------------------------------------------------------------
# Pipeline manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

class PipelineManager:
    """Runs at most one background batch at a time."""

    _task: Optional[asyncio.Task] = None
    _status: Optional[PipelineStatus] = None

    @classmethod
    def is_running(cls) -> bool:
        return cls._task is not None and not cls._task.done()

    @classmethod
    def get_status(cls) -> Optional[PipelineStatus]:
        return cls._status

    @classmethod
    def start(
        cls,
        coro: Coroutine[Any, Any, Any],
        status: Optional[PipelineStatus] = None,
    ) -> PipelineStatus:
        """
        Launch a background batch.

        *status* should be the same object the coroutine updates, so pollers
        see progress in real time.  Raises RuntimeError if a batch is
        already running.
        """
        if cls.is_running():
            coro.close()
            raise RuntimeError("A batch is already running")

        if status is None:
            status = PipelineStatus()
        cls._status = status

        async def _wrapper() -> None:
            try:
                await coro
            except Exception as exc:
                logger.error("Batch task failed: %s", exc, exc_info=True)
                status.phase = PipelinePhase.FAILED
                status.errors.append(f"pipeline crash: {truncate_text(str(exc))}")
            finally:
                status.completed_at = time.monotonic()
                if status.phase not in (PipelinePhase.COMPLETED, PipelinePhase.FAILED):
                    status.phase = PipelinePhase.FAILED

        cls._task = asyncio.create_task(_wrapper())
        cls._task.add_done_callback(lambda _t: cls._cleanup())

        logger.info("Batch task started for %s", status.input_dir)
        return status

    @classmethod
    async def wait(cls) -> None:
        """Block until the current batch (if any) finishes."""
        if cls._task is not None:
            await asyncio.shield(cls._task)

    @classmethod
    def reset(cls) -> None:
        cls._task = None
        cls._status = None

    @classmethod
    def _cleanup(cls) -> None:
        """Drop the task reference (status is kept for polling)."""
        cls._task = None


# Module-level singleton instance
pipeline_manager = PipelineManager
