# ooxlate/services/events.py
"""
Progress events emitted while a document is translated.

One run produces, in order:
    Start, (Progress | Translated | Error)*, Complete

Complete is always the last event; its error is None on success.
"""

import logging
import queue
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


class EventKind(Enum):
    START = "start"
    PROGRESS = "progress"
    TRANSLATED = "translated"
    ERROR = "error"
    COMPLETE = "complete"


class Stage(Enum):
    """Where in the pipeline an event originated."""
    SHEET = "sheet"                  # Sheet names
    CELL = "cell"                    # Shared strings / cells
    SHAPE = "shape"                  # Drawing text
    DOCX = "docx"                    # Word body, headers, footers
    LLM = "llm"                      # Translation backend
    FILEPROCESSOR = "fileprocessor"  # Archive and pipeline errors
    INIT = "init"                    # Engine construction


@dataclass(frozen=True)
class TranslationEvent:
    kind: EventKind
    file: str = ""
    stage: Optional[Stage] = None
    original: str = ""
    translated: str = ""
    error: Optional[BaseException] = None
    done: int = 0
    total: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.kind == EventKind.COMPLETE

    def __str__(self) -> str:
        stage = f"[{self.stage.value}] " if self.stage else ""
        if self.kind == EventKind.PROGRESS:
            return f"{stage}{self.done}/{self.total}"
        if self.kind == EventKind.TRANSLATED:
            return f"{stage}{self.original} -> {self.translated}"
        if self.kind == EventKind.ERROR:
            return f"{stage}error: {self.error}"
        if self.kind == EventKind.COMPLETE:
            return f"complete: {self.error}" if self.error else "complete"
        return f"{self.kind.value} {self.file}"


EventCallback = Callable[[TranslationEvent], None]


def stage_for_part(part_name: str) -> Stage:
    """Map an archive entry name to the stage reported in its events."""
    if part_name.startswith("word/"):
        return Stage.DOCX
    if "sharedStrings" in part_name:
        return Stage.CELL
    if "drawings/" in part_name:
        return Stage.SHAPE
    if part_name.endswith("workbook.xml"):
        return Stage.SHEET
    return Stage.FILEPROCESSOR


_CLOSED = object()


class EventStream:
    """
    Bounded, ordered event channel between a pipeline thread and a consumer.

    emit() blocks while the queue is full. Once the run's token is cancelled,
    non-terminal events that do not fit are dropped so that a consumer that
    stopped reading cannot stall cancellation. Complete is never dropped.
    """

    DEFAULT_MAXSIZE = 32
    PUT_INTERVAL = 0.05

    def __init__(self, maxsize: int = DEFAULT_MAXSIZE):
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, maxsize))
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def emit(self, event: TranslationEvent, cancel_token: Optional[CancellationToken] = None) -> None:
        while True:
            try:
                self._queue.put(event, timeout=self.PUT_INTERVAL)
                return
            except queue.Full:
                if not event.is_terminal and cancel_token is not None and cancel_token.cancelled:
                    self._dropped += 1
                    logger.debug("Dropped %s event after cancellation", event.kind.value)
                    return

    def close(self) -> None:
        """Signal end of stream. Blocks until the consumer makes room."""
        self._queue.put(_CLOSED)

    def get(self, timeout: Optional[float] = None) -> Optional[TranslationEvent]:
        """
        Next event, or None at end of stream.

        Raises:
            queue.Empty: If timeout passes first.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the marker for other readers
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[TranslationEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event
