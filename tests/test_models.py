# tests/test_models.py
"""Tests for ooxlate.models.types"""

from pathlib import Path

import pytest

from ooxlate.models.types import (
    SUPPORTED_EXTENSIONS,
    DocumentState,
    ExtractionItem,
    FileType,
    FragmentResult,
    TranslationResult,
    TranslationStatus,
    TranslationTask,
)


class TestFileType:

    def test_supported_extensions(self):
        assert SUPPORTED_EXTENSIONS == {".xlsx": FileType.EXCEL, ".docx": FileType.WORD}


class TestExtractionItem:

    def test_valid_spans(self):
        item = ExtractionItem(text="売上", match_start=0, match_end=11, text_start=3, text_end=5)
        assert item.text == "売上"

    def test_empty_text_span_allowed(self):
        ExtractionItem(text="", match_start=0, match_end=7, text_start=3, text_end=3)

    @pytest.mark.parametrize("spans", [
        (5, 10, 4, 6),    # text starts before match
        (0, 10, 6, 11),   # text ends after match
        (0, 10, 7, 6),    # reversed text span
    ])
    def test_inconsistent_spans_rejected(self, spans):
        match_start, match_end, text_start, text_end = spans
        with pytest.raises(ValueError, match="inconsistent spans"):
            ExtractionItem("x", match_start, match_end, text_start, text_end)

    def test_frozen(self):
        item = ExtractionItem("x", 0, 1, 0, 1)
        with pytest.raises(AttributeError):
            item.text = "y"


class TestTranslationTask:

    def test_sheet_name_task_has_no_cell(self):
        assert TranslationTask(sheet="売上", original_text="売上").cell_coord is None


class TestFragmentResult:

    def test_succeeded(self):
        assert FragmentResult("売上", "销售", done=1, total=2).succeeded
        assert not FragmentResult("売上", error=RuntimeError("boom")).succeeded


class TestTranslationResult:

    def test_defaults(self):
        result = TranslationResult(status=TranslationStatus.PENDING)
        assert result.state == DocumentState.IDLE
        assert result.warnings == []
        assert not result.succeeded

    def test_success_summary(self):
        result = TranslationResult(
            status=TranslationStatus.COMPLETED,
            output_path=Path("out.docx"),
            fragments_translated=3,
            fragments_total=4,
            warnings=["word/document.xml: translation failed"],
        )
        assert result.succeeded
        assert result.get_summary() == "Success: 3/4 fragments translated (1 warnings)"

    def test_failed_summary(self):
        result = TranslationResult(status=TranslationStatus.FAILED, error_message="bad archive")
        assert result.get_summary() == "Failed: bad archive"

    def test_cancelled_summary(self):
        assert TranslationResult(status=TranslationStatus.CANCELLED).get_summary() == "Cancelled"
