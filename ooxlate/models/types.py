# ooxlate/models/types.py
"""
Core data types for the OOXML translation pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional


class FileType(Enum):
    """Supported file types"""
    EXCEL = "excel"
    WORD = "word"


SUPPORTED_EXTENSIONS = {
    ".xlsx": FileType.EXCEL,
    ".docx": FileType.WORD,
}


class PartKind(Enum):
    """XML part shapes that carry translatable text"""
    WORD_TEXT = "word_text"            # <w:t ...>text</w:t>
    SHARED_STRING = "shared_string"    # <t>text</t>
    DRAWING_TEXT = "drawing_text"      # <a:t>text</a:t>
    SHEET_NAME = "sheet_name"          # <sheet name="..." .../>


class TranslationStatus(Enum):
    """Translation job status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DocumentState(Enum):
    """Lifecycle of one document run"""
    IDLE = "idle"
    UNZIPPED = "unzipped"
    TRANSLATING_PARTS = "translating_parts"
    REZIPPED = "rezipped"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExtractionItem:
    """
    A translatable text span located inside one XML part.

    Offsets index into the content string returned by the extraction pass
    that produced the item; any other edit to that content invalidates them.
    """
    text: str          # Entity-decoded text
    match_start: int   # Full markup match [match_start, match_end)
    match_end: int
    text_start: int    # Text payload [text_start, text_end)
    text_end: int

    def __post_init__(self):
        if not (self.match_start <= self.text_start <= self.text_end <= self.match_end):
            raise ValueError(
                f"inconsistent spans: match=({self.match_start}, {self.match_end}) "
                f"text=({self.text_start}, {self.text_end})"
            )


@dataclass
class TranslationTask:
    """
    A single cell or sheet to translate in workbook mode.
    """
    sheet: str
    original_text: str
    cell_coord: Optional[str] = None   # None for sheet-name tasks


@dataclass
class FragmentResult:
    """Outcome of one fragment within a batch."""
    original: str
    translated: str = ""                   # Empty when the fragment failed
    error: Optional[BaseException] = None
    done: int = 0                          # Progress within the batch
    total: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class TranslationResult:
    """
    Result of translating one document.
    """
    status: TranslationStatus
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    state: DocumentState = DocumentState.IDLE
    fragments_translated: int = 0
    fragments_total: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == TranslationStatus.COMPLETED

    def get_summary(self) -> str:
        """Get a human-readable summary of the run."""
        if self.status == TranslationStatus.CANCELLED:
            return "Cancelled"
        if self.status == TranslationStatus.FAILED:
            return f"Failed: {self.error_message}"
        summary = f"Success: {self.fragments_translated}/{self.fragments_total} fragments translated"
        if self.warnings:
            summary += f" ({len(self.warnings)} warnings)"
        return summary


# Callback types
ResultCallback = Callable[[FragmentResult], None]
