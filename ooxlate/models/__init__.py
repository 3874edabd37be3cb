# ooxlate/models/__init__.py
"""
Data models for ooxlate.
"""

from .types import (
    FileType,
    SUPPORTED_EXTENSIONS,
    PartKind,
    TranslationStatus,
    DocumentState,
    ExtractionItem,
    TranslationTask,
    FragmentResult,
    TranslationResult,
    ResultCallback,
)

__all__ = [
    'FileType',
    'SUPPORTED_EXTENSIONS',
    'PartKind',
    'TranslationStatus',
    'DocumentState',
    'ExtractionItem',
    'TranslationTask',
    'FragmentResult',
    'TranslationResult',
    'ResultCallback',
]
