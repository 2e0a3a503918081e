"""Progress channels for streaming pipeline runs.

A channel carries an ordered sequence of ``ProgressEvent`` values for one
pipeline run and ends with exactly one terminal event (complete, error or
cancel). Progress values are clamped so consumers always observe a
non-decreasing percentage within 0-100.

Events are delivered to an optional listener (plain or async callable) and can
also be consumed with ``async for``, which is how the HTTP layer turns a run
into Server-Sent Events.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from orchestrator.exceptions import ProgressChannelClosedError

logger = logging.getLogger("rejoinder.orchestrator.progress")

EventType = Literal["progress", "complete", "error", "cancel"]
TERMINAL_TYPES = frozenset({"complete", "error", "cancel"})

# Named channels, one per user-triggered pipeline.
UPLOAD_PROGRESS = "upload-progress"
REQUEST_PROGRESS = "request-progress"
DRAFT_PROGRESS = "draft-progress"
LETTER_PROGRESS = "letter-progress"

ProgressListener = Callable[["ProgressEvent"], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """A single progress notification."""

    type: EventType
    stage: str = ""
    message: str = ""
    progress: int = 0
    html: str | None = None
    section_html: str | None = None
    data: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "stage": self.stage,
            "message": self.message,
            "progress": self.progress,
        }
        if self.html is not None:
            payload["html"] = self.html
        if self.section_html is not None:
            payload["sectionHtml"] = self.section_html
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class ProgressScale:
    """Maps a nominal 0-100 schedule onto the ``[start, end]`` window."""

    start: int = 0
    end: int = 100

    def __call__(self, nominal: float) -> int:
        nominal = min(max(nominal, 0), 100)
        return round(self.start + (self.end - self.start) * nominal / 100)


IDENTITY_SCALE = ProgressScale()


@dataclass
class ProgressChannel:
    """Ordered, monotonic event stream for one pipeline run."""

    name: str
    listener: ProgressListener | None = None
    _events: list[ProgressEvent] = field(default_factory=list, init=False, repr=False)
    _queue: asyncio.Queue[ProgressEvent] = field(default_factory=asyncio.Queue, init=False, repr=False)
    _last_progress: int = field(default=0, init=False)
    _closed: bool = field(default=False, init=False)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_progress(self) -> int:
        return self._last_progress

    @property
    def events(self) -> tuple[ProgressEvent, ...]:
        return tuple(self._events)

    def remaining_window(self) -> ProgressScale:
        """Scale covering what is left between the current value and 100."""
        return ProgressScale(self._last_progress, 100)

    async def emit(self, event: ProgressEvent) -> ProgressEvent:
        """Deliver ``event`` after clamping its progress value.

        Raises:
            ProgressChannelClosedError: If a terminal event was already sent.
        """
        if self._closed:
            raise ProgressChannelClosedError(self.name)

        clamped = min(max(int(event.progress), self._last_progress, 0), 100)
        if event.type == "complete":
            clamped = 100
        if clamped != event.progress:
            event = replace(event, progress=clamped)

        self._last_progress = clamped
        if event.is_terminal:
            self._closed = True

        self._events.append(event)
        logger.debug("[%s] %s %s %d%%", self.name, event.type, event.stage, event.progress)

        # Queued first: an iterating consumer must still see the event if the listener raises
        self._queue.put_nowait(event)
        if self.listener is not None:
            result = self.listener(event)
            if inspect.isawaitable(result):
                await result
        return event

    async def progress(
        self,
        stage: str,
        message: str,
        progress: int,
        *,
        html: str | None = None,
        section_html: str | None = None,
    ) -> ProgressEvent:
        return await self.emit(
            ProgressEvent(
                type="progress",
                stage=stage,
                message=message,
                progress=progress,
                html=html,
                section_html=section_html,
            )
        )

    async def complete(self, data: Any = None, message: str = "Complete") -> ProgressEvent:
        return await self.emit(
            ProgressEvent(type="complete", stage="complete", message=message, progress=100, data=data)
        )

    async def fail(self, error: str | BaseException, stage: str = "error") -> ProgressEvent:
        text = getattr(error, "message", None) or str(error)
        return await self.emit(
            ProgressEvent(
                type="error",
                stage=stage,
                message=text,
                progress=self._last_progress,
                error=text,
            )
        )

    async def cancel(self, message: str = "Cancelled") -> ProgressEvent:
        return await self.emit(
            ProgressEvent(type="cancel", stage="cancel", message=message, progress=self._last_progress)
        )

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return
