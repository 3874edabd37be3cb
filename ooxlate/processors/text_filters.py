# ooxlate/processors/text_filters.py
"""
Shared rules deciding whether a text fragment is worth translating.
Used by the XML extractor, the workbook processor and the LLM engine.
"""

import unicodedata


# (start, end) inclusive code point ranges
_CJK_RANGES = (
    (0x2E80, 0x2FDF),    # CJK radicals, Kangxi radicals
    (0x3005, 0x3007),    # 々 〆 〇
    (0x3021, 0x3029),    # Hangzhou numerals
    (0x3038, 0x303B),
    (0x3040, 0x309F),    # Hiragana
    (0x30A0, 0x30FF),    # Katakana
    (0x3130, 0x318F),    # Hangul compatibility jamo
    (0x31F0, 0x31FF),    # Katakana phonetic extensions
    (0x3400, 0x4DBF),    # CJK extension A
    (0x4E00, 0x9FFF),    # CJK unified ideographs
    (0x1100, 0x11FF),    # Hangul jamo
    (0xAC00, 0xD7AF),    # Hangul syllables
    (0xF900, 0xFAFF),    # CJK compatibility ideographs
    (0xFF66, 0xFF9D),    # Halfwidth katakana
    (0x20000, 0x323AF),  # CJK extensions B-H
)


def is_cjk_char(char: str) -> bool:
    code = ord(char)
    for start, end in _CJK_RANGES:
        if start <= code <= end:
            return True
    return False


def contains_cjk(text: str) -> bool:
    """
    Check if text contains any Han, Hiragana, Katakana or Hangul character.

    Examples:
        "こんにちは" → True
        "売上 2024" → True
        "Hello" → False
        "123" → False
    """
    return any(is_cjk_char(char) for char in text)


def is_valid_text_content(text: str) -> bool:
    """
    Check if text carries meaning worth translating.

    Returns False for blank text and for text made only of numbers,
    punctuation, symbols and whitespace ("123", "!!", "¥1,000", "   ").
    Mixed content such as "Hello 123" is meaningful.
    """
    trimmed = text.strip()
    if not trimmed:
        return False

    for char in trimmed:
        if char.isspace():
            continue
        # N*: numbers, P*: punctuation, S*: symbols
        if unicodedata.category(char)[0] not in ('N', 'P', 'S'):
            return True
    return False


class FragmentFilter:
    """
    Decides whether an extracted fragment becomes a translation item.
    """

    def __init__(self, cjk_only: bool = False):
        self.cjk_only = cjk_only

    def should_translate(self, text: str) -> bool:
        """
        Skip conditions:
        - Empty or whitespace only
        - Numbers, punctuation and symbols only
        - In CJK-only mode: text without any CJK character
        """
        if not is_valid_text_content(text):
            return False
        if self.cjk_only and not contains_cjk(text):
            return False
        return True
