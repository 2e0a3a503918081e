"""Bookkeeping for pipeline runs.

Each user action (request import, objection extraction, batch drafting, letter
assembly) is a run against one request letter. Only one run per letter may be
active at a time; a second attempt is refused with ``RunInProgressError``
instead of queueing, since the two runs would race on the same requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from orchestrator.exceptions import RunInProgressError

logger = logging.getLogger("rejoinder.orchestrator.run_registry")


class RunStatus(Enum):
    """Status of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineRun:
    """One pipeline run against a request letter.

    Attributes:
        run_id: Unique identifier for this run.
        case_id: Case the letter belongs to.
        letter_id: Request letter being worked on.
        pipeline: Which pipeline is running (``extract``, ``assemble``, ...).
        status: Current run status.
        started_at: When the run started.
        completed_at: When the run finished.
        error: Error message (if failed).
    """

    run_id: str
    case_id: str
    letter_id: str
    pipeline: str
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.case_id, self.letter_id)


class RunRegistry:
    """Tracks active runs and refuses overlapping runs on the same letter.

    Usage:
        registry = RunRegistry()

        async with registry.run("case-1", "rog-set1", "assemble") as run:
            ...  # a concurrent run for ("case-1", "rog-set1") now fails
    """

    def __init__(self) -> None:
        self._active: dict[tuple[str, str], PipelineRun] = {}
        self._lock = asyncio.Lock()

    async def start(self, case_id: str, letter_id: str, pipeline: str) -> PipelineRun:
        """Register a run.

        Raises:
            RunInProgressError: If a run is already active for the letter.
        """
        async with self._lock:
            existing = self._active.get((case_id, letter_id))
            if existing is not None:
                logger.warning(
                    "Refusing %s run for %s/%s: %s run %s still active",
                    pipeline,
                    case_id,
                    letter_id,
                    existing.pipeline,
                    existing.run_id,
                )
                raise RunInProgressError(case_id, letter_id, existing.pipeline)

            run = PipelineRun(run_id=str(uuid4()), case_id=case_id, letter_id=letter_id, pipeline=pipeline)
            self._active[run.key] = run

        logger.info("Started %s run %s for %s/%s", pipeline, run.run_id, case_id, letter_id)
        return run

    async def finish(self, run: PipelineRun, error: BaseException | None = None) -> None:
        async with self._lock:
            self._active.pop(run.key, None)
            run.completed_at = datetime.now(UTC)
            if error is None:
                run.status = RunStatus.COMPLETED
            else:
                run.status = RunStatus.FAILED
                run.error = getattr(error, "message", None) or str(error) or type(error).__name__

        elapsed = (run.completed_at - run.started_at).total_seconds()
        if run.status is RunStatus.COMPLETED:
            logger.info("Run %s (%s) completed in %.1fs", run.run_id, run.pipeline, elapsed)
        else:
            logger.error("Run %s (%s) failed after %.1fs: %s", run.run_id, run.pipeline, elapsed, run.error)

    @asynccontextmanager
    async def run(self, case_id: str, letter_id: str, pipeline: str) -> AsyncIterator[PipelineRun]:
        """Hold the letter for the duration of the ``async with`` block."""
        current = await self.start(case_id, letter_id, pipeline)
        try:
            yield current
        except BaseException as exc:
            await self.finish(current, exc)
            raise
        else:
            await self.finish(current)

    def get_active(self, case_id: str, letter_id: str) -> PipelineRun | None:
        return self._active.get((case_id, letter_id))
