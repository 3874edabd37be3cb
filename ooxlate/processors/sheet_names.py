# ooxlate/processors/sheet_names.py
"""
Excel sheet name rules.

Excel sheet names cannot contain: \\ / ? * [ ] :
Maximum length is 31 characters, and names are unique ignoring case.
"""

import re
from typing import Iterable

_EXCEL_SHEET_NAME_FORBIDDEN = re.compile(r'[\\/?*\[\]:]')
EXCEL_SHEET_NAME_MAX_LENGTH = 31
DEFAULT_SHEET_NAME = "Sheet"


def truncate_sheet_name(name: str, max_length: int = EXCEL_SHEET_NAME_MAX_LENGTH) -> str:
    """Cut a name to max_length code points (not bytes)."""
    if len(name) <= max_length:
        return name
    return name[:max_length]


def sanitize_sheet_name(name: str, max_length: int = EXCEL_SHEET_NAME_MAX_LENGTH) -> str:
    """
    Sanitize a translated string to be used as an Excel sheet name.

    Forbidden characters are removed, surrounding quotes and whitespace are
    stripped, and the result is truncated to 31 characters. An empty result
    falls back to "Sheet".

    Args:
        name: The sheet name to sanitize
        max_length: Maximum allowed length (default 31)

    Returns:
        Sanitized sheet name safe for Excel
    """
    cleaned = _EXCEL_SHEET_NAME_FORBIDDEN.sub('', name)
    cleaned = cleaned.strip().strip("'\"").strip()
    if not cleaned:
        return DEFAULT_SHEET_NAME

    # Truncation can expose trailing whitespace
    cleaned = truncate_sheet_name(cleaned, max_length).rstrip()
    return cleaned or DEFAULT_SHEET_NAME


def ensure_unique_sheet_name(name: str, taken: set[str]) -> str:
    """
    Return name, or name with _1, _2, ... appended, so that it does not
    collide (case-insensitively) with anything in taken. The chosen name is
    added to taken.
    """
    if name.casefold() not in taken:
        taken.add(name.casefold())
        return name

    counter = 1
    while True:
        suffix = f"_{counter}"
        base = name[:EXCEL_SHEET_NAME_MAX_LENGTH - len(suffix)]
        candidate = f"{base}{suffix}"
        if candidate.casefold() not in taken:
            taken.add(candidate.casefold())
            return candidate
        counter += 1


def resolve_sheet_names(translated: list[str], fixed_names: Iterable[str] = ()) -> list[str]:
    """
    Turn raw translations into final sheet names.

    Args:
        translated: Translated names in workbook order
        fixed_names: Names of sheets that keep their current name

    Returns:
        Sanitized, de-duplicated names in the same order as translated
    """
    taken = {n.casefold() for n in fixed_names}
    return [ensure_unique_sheet_name(sanitize_sheet_name(t), taken) for t in translated]
