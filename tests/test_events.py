# tests/test_events.py
"""Tests for ooxlate.services.events"""

import queue
import threading

import pytest

from ooxlate.services.cancellation import CancellationToken
from ooxlate.services.events import (
    EventKind,
    EventStream,
    Stage,
    TranslationEvent,
    stage_for_part,
)


class TestStageForPart:

    @pytest.mark.parametrize("name,stage", [
        ("word/document.xml", Stage.DOCX),
        ("word/header1.xml", Stage.DOCX),
        ("xl/sharedStrings.xml", Stage.CELL),
        ("xl/drawings/drawing1.xml", Stage.SHAPE),
        ("xl/workbook.xml", Stage.SHEET),
    ])
    def test_mapping(self, name, stage):
        assert stage_for_part(name) == stage


class TestTranslationEvent:

    def test_complete_is_terminal(self):
        assert TranslationEvent(EventKind.COMPLETE).is_terminal
        assert not TranslationEvent(EventKind.PROGRESS).is_terminal

    def test_str(self):
        event = TranslationEvent(EventKind.TRANSLATED, stage=Stage.CELL, original="売上", translated="销售")
        assert str(event) == "[cell] 売上 -> 销售"
        assert str(TranslationEvent(EventKind.PROGRESS, stage=Stage.DOCX, done=2, total=5)) == "[docx] 2/5"


class TestEventStream:

    def test_events_in_order_then_end(self):
        stream = EventStream()
        kinds = [EventKind.START, EventKind.PROGRESS, EventKind.TRANSLATED, EventKind.COMPLETE]
        for kind in kinds:
            stream.emit(TranslationEvent(kind))
        stream.close()

        assert [e.kind for e in stream] == kinds

    def test_iteration_ends_repeatedly_after_close(self):
        stream = EventStream()
        stream.close()
        assert list(stream) == []
        assert list(stream) == []

    def test_bounded_backpressure(self):
        stream = EventStream(maxsize=2)
        received = []

        def producer():
            for i in range(10):
                stream.emit(TranslationEvent(EventKind.PROGRESS, done=i + 1, total=10))
            stream.emit(TranslationEvent(EventKind.COMPLETE))
            stream.close()

        thread = threading.Thread(target=producer)
        thread.start()
        for event in stream:
            received.append(event)
        thread.join()

        assert [e.done for e in received[:-1]] == list(range(1, 11))
        assert received[-1].kind == EventKind.COMPLETE

    def test_drops_progress_after_cancel_when_full(self):
        stream = EventStream(maxsize=1)
        token = CancellationToken()
        stream.emit(TranslationEvent(EventKind.START), token)
        token.cancel()

        # Would block forever without the drop
        stream.emit(TranslationEvent(EventKind.PROGRESS), token)

        assert stream.dropped == 1
        assert stream.get(timeout=1).kind == EventKind.START

    def test_complete_is_never_dropped(self):
        stream = EventStream(maxsize=1)
        token = CancellationToken()
        stream.emit(TranslationEvent(EventKind.START), token)
        token.cancel()

        done = threading.Event()

        def emit_complete():
            stream.emit(TranslationEvent(EventKind.COMPLETE), token)
            done.set()

        threading.Thread(target=emit_complete, daemon=True).start()
        assert not done.wait(0.2)

        assert stream.get(timeout=1).kind == EventKind.START
        assert done.wait(1)
        assert stream.get(timeout=1).kind == EventKind.COMPLETE
        assert stream.dropped == 0

    def test_get_timeout(self):
        with pytest.raises(queue.Empty):
            EventStream().get(timeout=0.01)
