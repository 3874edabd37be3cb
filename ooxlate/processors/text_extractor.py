# ooxlate/processors/text_extractor.py
"""
Locate and replace translatable text inside OOXML part files.

The scan is regex based on purpose: only a small, fixed set of part shapes is
supported, and each of them keeps its text in non-nested elements. A part is
translated in two steps that must bracket translation with no other edit:

    content, items = extractor.extract(content, part_name)
    translations = translate([item.text for item in items])
    content = extractor.apply(content, part_name, items, translations)

apply() replays the spans captured by extract(); it never searches for the
text again, because the same text can appear several times.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from ooxlate.models.types import ExtractionItem, PartKind
from ooxlate.services.exceptions import CountMismatchError
from .sheet_names import EXCEL_SHEET_NAME_MAX_LENGTH, truncate_sheet_name
from .text_filters import FragmentFilter

# Module logger
logger = logging.getLogger(__name__)

# Excel phonetic (furigana/ruby) markup inside shared strings. Never translated.
_RE_PHONETIC_RUN = re.compile(r'<rPh\b[^>]*?>.*?</rPh>', re.DOTALL)
_RE_PHONETIC_PROPERTY = re.compile(r'<phoneticPr\b[^>]*?/?>', re.DOTALL)


def _text_element(tag: str) -> re.Pattern:
    # <tag>, <tag attr="..."> but neither <tag/> nor <tagOther ...>
    return re.compile(
        r'<' + re.escape(tag) + r'(?:\s[^>]*?)?(?<!/)>(.*?)</' + re.escape(tag) + r'>',
        re.DOTALL,
    )


@dataclass(frozen=True)
class PartPattern:
    """How to find text in one kind of XML part."""
    kind: PartKind
    markers: tuple[str, ...]             # Part name substrings
    regex: re.Pattern                    # Group 1 is the text payload
    strip_phonetics: bool = False
    max_length: Optional[int] = None     # Applied to translations on apply


PART_PATTERNS: tuple[PartPattern, ...] = (
    PartPattern(
        kind=PartKind.WORD_TEXT,
        markers=("word/document.xml", "word/header", "word/footer"),
        regex=_text_element("w:t"),
    ),
    PartPattern(
        kind=PartKind.SHARED_STRING,
        markers=("xl/sharedStrings.xml",),
        regex=_text_element("t"),
        strip_phonetics=True,
    ),
    PartPattern(
        kind=PartKind.DRAWING_TEXT,
        markers=("xl/drawings/drawing",),
        regex=_text_element("a:t"),
    ),
    PartPattern(
        kind=PartKind.SHEET_NAME,
        markers=("xl/workbook.xml",),
        # name may appear anywhere among the attributes
        regex=re.compile(r'<sheet\s(?:[^>]*?\s)?name="([^"]*)"[^>]*>'),
        max_length=EXCEL_SHEET_NAME_MAX_LENGTH,
    ),
)

_PATTERNS_BY_KIND = {p.kind: p for p in PART_PATTERNS}


def find_part_pattern(part_name: str) -> Optional[PartPattern]:
    """Return the pattern for an archive entry name, or None to copy it through."""
    if not part_name.endswith(".xml"):
        return None
    for pattern in PART_PATTERNS:
        if any(marker in part_name for marker in pattern.markers):
            return pattern
    return None


def classify_part(part_name: str) -> Optional[PartKind]:
    pattern = find_part_pattern(part_name)
    return pattern.kind if pattern else None


def remove_phonetic_annotations(content: str) -> str:
    """Strip Excel phonetic (ruby) runs and properties."""
    content = _RE_PHONETIC_RUN.sub('', content)
    return _RE_PHONETIC_PROPERTY.sub('', content)


class TextExtractor:
    """
    Extracts translatable fragments from one XML part and writes translations
    back into the same positions.
    """

    def __init__(self, cjk_only: bool = False):
        self.fragment_filter = FragmentFilter(cjk_only=cjk_only)

    @property
    def cjk_only(self) -> bool:
        return self.fragment_filter.cjk_only

    def extract(self, content: str, part_name: str) -> tuple[str, list[ExtractionItem]]:
        """
        Find the text nodes in content that need translation.

        Args:
            content: Decoded XML part
            part_name: Archive entry name, used to pick the pattern

        Returns:
            (baseline content, items). The baseline differs from content only
            for shared strings, where phonetic markup is removed. Callers must
            pass the baseline to apply().
        """
        pattern = find_part_pattern(part_name)
        if pattern is None:
            return content, []

        if pattern.strip_phonetics:
            content = remove_phonetic_annotations(content)

        items: list[ExtractionItem] = []
        skipped = 0
        for match in pattern.regex.finditer(content):
            text = html.unescape(match.group(1))
            if not self.fragment_filter.should_translate(text):
                skipped += 1
                continue
            items.append(ExtractionItem(
                text=text,
                match_start=match.start(),
                match_end=match.end(),
                text_start=match.start(1),
                text_end=match.end(1),
            ))

        logger.debug(
            "Extracted %d fragments from %s (%s), skipped %d",
            len(items), part_name, pattern.kind.value, skipped,
        )
        return content, items

    def apply(
        self,
        content: str,
        part_name: str,
        items: Sequence[ExtractionItem],
        translations: Sequence[str],
    ) -> str:
        """
        Replace each item's text span with its translation.

        Raises:
            CountMismatchError: If items and translations differ in length.
        """
        if len(items) != len(translations):
            raise CountMismatchError(len(items), len(translations))
        if not items:
            return content

        pattern = find_part_pattern(part_name)
        max_length = pattern.max_length if pattern else None

        parts: list[str] = []
        last_index = 0
        for item, translated in zip(items, translations):
            if max_length is not None:
                translated = truncate_sheet_name(translated, max_length)
            parts.append(content[last_index:item.text_start])
            parts.append(html.escape(translated, quote=True))
            parts.append(content[item.text_end:item.match_end])
            last_index = item.match_end
        parts.append(content[last_index:])
        return ''.join(parts)


def get_part_pattern(kind: PartKind) -> PartPattern:
    return _PATTERNS_BY_KIND[kind]
