# tests/test_translation_service.py
"""Tests for ooxlate.services.translation_service"""

import random
import threading
import time
import zipfile

import docx
import openpyxl
import pytest

from conftest import FakeChatClient, api_error, build_docx, build_xlsx, corrupt_entry, read_entries
from ooxlate.config.settings import AppSettings
from ooxlate.models.types import DocumentState, TranslationStatus
from ooxlate.services.cancellation import CancellationToken
from ooxlate.services.events import EventKind, Stage
from ooxlate.services.exceptions import (
    ArchiveError,
    EngineFailureError,
    InvalidInputError,
    TranslationCancelledError,
)
from ooxlate.services.llm_engine import LLMTranslationEngine
from ooxlate.services.translation_service import TranslationService


def make_service(settings, client):
    return TranslationService(settings, engine=LLMTranslationEngine(settings, client=client))


@pytest.fixture
def service(settings, fake_client):
    return make_service(settings, fake_client)


def _kinds(events):
    return [e.kind for e in events]


class TestTranslateDocx:

    def test_end_to_end(self, service, tmp_path):
        src = build_docx(tmp_path / "report.docx", ["売上報告", "Hello", "123"], header="社外秘")
        out = tmp_path / "out" / "report_zh.docx"
        events = []

        result = service.translate_file(src, out, on_event=events.append)

        assert result.status == TranslationStatus.COMPLETED
        assert result.state == DocumentState.DONE
        assert result.output_path == out
        assert result.fragments_total == 2
        assert result.fragments_translated == 2

        document = docx.Document(out)
        assert [p.text for p in document.paragraphs] == ["[zh]売上報告", "Hello", "123"]
        assert document.sections[0].header.paragraphs[0].text == "[zh]社外秘"

        assert events[0].kind == EventKind.START
        assert events[-1].kind == EventKind.COMPLETE
        assert events[-1].error is None
        assert _kinds(events).count(EventKind.COMPLETE) == 1
        translated = {(e.original, e.translated) for e in events if e.kind == EventKind.TRANSLATED}
        assert translated == {("売上報告", "[zh]売上報告"), ("社外秘", "[zh]社外秘")}
        assert all(e.stage == Stage.DOCX for e in events if e.kind == EventKind.PROGRESS)

    def test_pass_through_parts_are_identical(self, service, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["売上"])
        out = tmp_path / "b.docx"

        service.translate_file(src, out)

        before, after = read_entries(src), read_entries(out)
        assert list(before) == list(after)
        for name in before:
            if name != "word/document.xml":
                assert before[name] == after[name], name

        with zipfile.ZipFile(src) as a, zipfile.ZipFile(out) as b:
            for info_a, info_b in zip(a.infolist(), b.infolist()):
                assert info_a.compress_type == info_b.compress_type
                assert info_a.date_time == info_b.date_time

    def test_no_fragments_is_byte_identical(self, service, fake_client, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["Hello", "2024"])
        out = tmp_path / "b.docx"

        result = service.translate_file(src, out)

        assert result.succeeded
        assert read_entries(src) == read_entries(out)
        assert fake_client.call_count == 0

    def test_default_output_path(self, service, tmp_path):
        src = build_docx(tmp_path / "memo.docx", ["メモ"])
        result = service.translate_file(src)
        assert result.output_path == tmp_path / "memo_translated.docx"
        assert result.output_path.exists()

    def test_order_preserved_under_random_latency(self, settings, tmp_path):
        rng = random.Random(7)
        delays = {f"段落{i}": rng.uniform(0.0, 0.03) for i in range(30)}

        def slow_translate(text):
            time.sleep(delays[text])
            return f"[zh]{text}"

        service = make_service(settings, FakeChatClient(translate=slow_translate, error_factory=api_error))
        src = build_docx(tmp_path / "a.docx", list(delays))
        out = tmp_path / "b.docx"

        assert service.translate_file(src, out).succeeded

        assert [p.text for p in docx.Document(out).paragraphs] == [f"[zh]{t}" for t in delays]

    def test_cache_shared_across_documents(self, service, fake_client, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["売上", "利益"])
        service.translate_file(src, tmp_path / "b.docx")
        calls = fake_client.call_count
        service.translate_file(src, tmp_path / "c.docx")
        assert fake_client.call_count == calls


class TestTranslateXlsx:

    def test_cells_and_sheet_names(self, settings, tmp_path):
        client = FakeChatClient(translate=lambda t: t.replace("売上", "销售"), error_factory=api_error)
        service = make_service(settings, client)
        src = build_xlsx(tmp_path / "book.xlsx", {
            "売上": {"A1": "売上高", "B1": "=SUM(1,2)", "C1": "Total", "D1": 5},
            "Data": {"A1": "売上高"},
        })
        out = tmp_path / "book_zh.xlsx"
        events = []

        result = service.translate_file(src, out, on_event=events.append)

        assert result.succeeded
        wb = openpyxl.load_workbook(out)
        try:
            assert wb.sheetnames == ["销售", "Data"]
            ws = wb["销售"]
            assert ws["A1"].value == "销售高"
            assert ws["B1"].value == "=SUM(1,2)"
            assert ws["C1"].value == "Total"
            assert ws["D1"].value == 5
            assert wb["Data"]["A1"].value == "销售高"
        finally:
            wb.close()

        stages = {e.stage for e in events if e.kind == EventKind.PROGRESS}
        assert stages == {Stage.SHEET, Stage.CELL}

    def test_sheet_name_collisions_resolved(self, settings, tmp_path):
        client = FakeChatClient(translate=lambda t: "Sales", error_factory=api_error)
        service = make_service(settings, client)
        src = build_xlsx(tmp_path / "book.xlsx", {
            "Sales": {"A1": 1},
            "売上": {"A1": 2},
            "販売": {"A1": 3},
        })
        out = tmp_path / "out.xlsx"

        assert service.translate_file(src, out).succeeded

        wb = openpyxl.load_workbook(out)
        try:
            assert wb.sheetnames == ["Sales", "Sales_1", "Sales_2"]
        finally:
            wb.close()

    def test_long_sheet_name_truncated(self, settings, tmp_path):
        client = FakeChatClient(translate=lambda t: "x" * 40, error_factory=api_error)
        service = make_service(settings, client)
        src = build_xlsx(tmp_path / "book.xlsx", {"データ": {"A1": 1}})
        out = tmp_path / "out.xlsx"

        assert service.translate_file(src, out).succeeded

        wb = openpyxl.load_workbook(out)
        try:
            assert wb.sheetnames == ["x" * 31]
        finally:
            wb.close()


class TestFailures:

    def test_missing_input(self, service, tmp_path):
        events = []
        result = service.translate_file(tmp_path / "missing.docx", tmp_path / "out.docx", events.append)

        assert result.status == TranslationStatus.FAILED
        assert result.state == DocumentState.FAILED
        assert not (tmp_path / "out.docx").exists()
        assert _kinds(events) == [EventKind.START, EventKind.ERROR, EventKind.COMPLETE]
        assert events[1].stage == Stage.FILEPROCESSOR
        assert isinstance(events[-1].error, InvalidInputError)

    def test_unsupported_extension(self, service, tmp_path):
        src = tmp_path / "slides.pptx"
        src.write_bytes(b"PK")
        result = service.translate_file(src, tmp_path / "out.pptx")

        assert result.status == TranslationStatus.FAILED
        assert "Unsupported file type" in result.error_message

    def test_corrupt_archive_leaves_nothing(self, service, tmp_path):
        src = tmp_path / "broken.docx"
        src.write_bytes(b"not a zip")
        out_dir = tmp_path / "out"

        result = service.translate_file(src, out_dir / "broken.docx")

        assert result.status == TranslationStatus.FAILED
        assert list(out_dir.iterdir()) == []

    def test_corrupt_part_data_fails_document(self, service, tmp_path):
        src = corrupt_entry(build_docx(tmp_path / "a.docx", ["売上"] * 50), "word/document.xml")
        out = tmp_path / "b.docx"
        events = []

        result = service.translate_file(src, out, on_event=events.append)

        assert result.status == TranslationStatus.FAILED
        assert not out.exists()
        assert events[-1].kind == EventKind.COMPLETE
        assert isinstance(events[-1].error, ArchiveError)
        assert [e.stage for e in events if e.kind == EventKind.ERROR] == [Stage.FILEPROCESSOR]

    def test_corrupt_part_does_not_stop_batch_run(self, service, tmp_path):
        bad = corrupt_entry(build_docx(tmp_path / "bad.docx", ["売上"] * 50), "word/document.xml")
        good = build_docx(tmp_path / "good.docx", ["利益"])

        results = service.translate_files([
            (bad, tmp_path / "bad_out.docx"),
            (good, tmp_path / "good_out.docx"),
        ])

        assert [r.status for r in results] == [TranslationStatus.FAILED, TranslationStatus.COMPLETED]

    def test_concurrent_failures_reported_once(self, tmp_path):
        settings = AppSettings(api_key="k", retry_delay=0.0, max_attempts=1)

        def failing_translate(text):
            time.sleep(0.1)
            raise api_error("backend unavailable")

        service = make_service(settings, FakeChatClient(translate=failing_translate, error_factory=api_error))
        src = build_docx(tmp_path / "a.docx", [f"段落{i}" for i in range(10)])
        events = []

        result = service.translate_file(src, tmp_path / "b.docx", on_event=events.append)

        assert result.status == TranslationStatus.COMPLETED
        assert len(result.warnings) == 1
        assert len([e for e in events if e.kind == EventKind.ERROR]) == 1

    def test_engine_failure_keeps_original_text(self, settings, tmp_path):
        client = FakeChatClient(failures=1000, error_factory=api_error)
        service = make_service(settings, client)
        src = build_docx(tmp_path / "a.docx", ["売上", "利益"])
        out = tmp_path / "b.docx"
        events = []

        result = service.translate_file(src, out, on_event=events.append)

        assert result.status == TranslationStatus.COMPLETED
        assert result.warnings
        assert result.fragments_translated == 0
        assert [p.text for p in docx.Document(out).paragraphs] == ["売上", "利益"]
        llm_errors = [e for e in events if e.kind == EventKind.ERROR and e.stage == Stage.LLM]
        assert llm_errors
        assert all(isinstance(e.error, EngineFailureError) for e in llm_errors)
        assert events[-1].error is None

    def test_abort_on_engine_failure(self, tmp_path):
        settings = AppSettings(api_key="k", retry_delay=0.0, abort_on_engine_failure=True)
        client = FakeChatClient(failures=1000, error_factory=api_error)
        service = make_service(settings, client)
        src = build_docx(tmp_path / "a.docx", ["売上"])
        out = tmp_path / "b.docx"
        events = []

        result = service.translate_file(src, out, on_event=events.append)

        assert result.status == TranslationStatus.FAILED
        assert not out.exists()
        assert isinstance(events[-1].error, EngineFailureError)

    def test_engine_init_failure(self, tmp_path, monkeypatch):
        for name in ("OOXLATE_API_KEY", "DASHSCOPE_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        service = TranslationService(AppSettings(api_key=""))
        src = build_docx(tmp_path / "a.docx", ["売上"])
        events = []

        result = service.translate_file(src, tmp_path / "b.docx", events.append)

        assert result.status == TranslationStatus.FAILED
        assert [e.stage for e in events if e.kind == EventKind.ERROR] == [Stage.INIT]


class TestCancellation:

    def test_cancelled_before_start(self, service, fake_client, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["売上"])
        token = CancellationToken()
        token.cancel()

        result = service.translate_file(src, tmp_path / "b.docx", cancel_token=token)

        assert result.status == TranslationStatus.CANCELLED
        assert result.state == DocumentState.CANCELLED
        assert not (tmp_path / "b.docx").exists()
        assert fake_client.call_count == 0

    def test_cancel_mid_run_writes_nothing(self, settings, tmp_path):
        token = CancellationToken()

        def translate_and_cancel(text):
            token.cancel("stop")
            return f"[zh]{text}"

        client = FakeChatClient(translate=translate_and_cancel, error_factory=api_error)
        service = make_service(settings, client)
        src = build_docx(tmp_path / "a.docx", [f"段落{i}" for i in range(20)])
        events = []

        result = service.translate_file(src, tmp_path / "b.docx", events.append, token)

        assert result.status == TranslationStatus.CANCELLED
        assert not (tmp_path / "b.docx").exists()
        assert [p.name for p in tmp_path.iterdir()] == ["a.docx"]
        assert isinstance(events[-1].error, TranslationCancelledError)
        assert not [e for e in events if e.kind == EventKind.ERROR]

    def test_abandoned_requests_emit_nothing_after_complete(self, tmp_path):
        settings = AppSettings(api_key="k", retry_delay=0.0, cancel_grace_period=0.2)

        def slow_translate(text):
            time.sleep(1.0)
            return f"[zh]{text}"

        service = make_service(settings, FakeChatClient(translate=slow_translate, error_factory=api_error))
        src = build_docx(tmp_path / "a.docx", ["売上", "利益", "費用"])
        token = CancellationToken()
        threading.Timer(0.1, token.cancel).start()
        events = []

        result = service.translate_file(src, tmp_path / "b.docx", events.append, token)
        time.sleep(1.2)

        assert result.status == TranslationStatus.CANCELLED
        assert events[-1].kind == EventKind.COMPLETE
        assert _kinds(events).count(EventKind.COMPLETE) == 1
        assert EventKind.TRANSLATED not in _kinds(events)

    def test_service_cancel_without_run_is_noop(self, service):
        service.cancel()


class TestEventStreamAndBatches:

    def test_translate_file_events(self, service, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["売上"])
        results = []

        stream = service.translate_file_events(src, tmp_path / "b.docx", on_result=results.append)
        events = list(stream)

        assert events[0].kind == EventKind.START
        assert events[-1].kind == EventKind.COMPLETE
        assert results[0].succeeded

    def test_translate_files_continues_after_failure(self, service, tmp_path):
        good = build_docx(tmp_path / "good.docx", ["売上"])
        bad = tmp_path / "bad.docx"
        bad.write_bytes(b"garbage")

        results = service.translate_files([
            (bad, tmp_path / "bad_out.docx"),
            (good, tmp_path / "good_out.docx"),
        ])

        assert [r.status for r in results] == [TranslationStatus.FAILED, TranslationStatus.COMPLETED]

    def test_translate_files_stops_on_cancel(self, service, tmp_path):
        src = build_docx(tmp_path / "a.docx", ["売上"])
        token = CancellationToken()
        token.cancel()

        assert service.translate_files([src, src], cancel_token=token) == []

    def test_invalid_input_error_is_structural(self):
        from ooxlate.services.exceptions import StructuralError
        assert issubclass(InvalidInputError, StructuralError)
