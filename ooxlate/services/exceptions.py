# ooxlate/services/exceptions.py
"""
Shared exception types.

Three families are kept apart so callers can react differently:
- StructuralError: the document itself cannot be processed (always fatal).
- EngineFailureError: the translation backend gave up after retries.
- TranslationCancelledError: the run was cancelled or hit its deadline.
"""

from typing import Optional


class OoxlateError(Exception):
    """Base class for all ooxlate errors."""

    pass


class StructuralError(OoxlateError):
    """Archive or XML part could not be read, rewritten or validated."""

    pass


class ArchiveError(StructuralError):
    """The OOXML container could not be opened, read or written."""

    pass


class PathTraversalError(StructuralError):
    """An archive entry name would escape the extraction root."""

    def __init__(self, name: str):
        super().__init__(f"Illegal entry path in archive: {name!r}")
        self.name = name


class CountMismatchError(StructuralError):
    """Number of translations does not match number of extracted items."""

    def __init__(self, items: int, translations: int):
        super().__init__(
            f"items count ({items}) and translations count ({translations}) do not match"
        )
        self.items = items
        self.translations = translations


class InvalidInputError(StructuralError):
    """Input path is missing or not a supported document."""

    pass


class PartEncodingError(StructuralError):
    """An XML part is not valid UTF-8."""

    pass


class EngineFailureError(OoxlateError):
    """Translation backend failed after exhausting retries."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class TranslationCancelledError(OoxlateError):
    """Raised when translation is cancelled by user or deadline."""

    pass
