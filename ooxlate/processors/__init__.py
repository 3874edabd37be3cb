# ooxlate/processors/__init__.py
"""
Document processors for ooxlate.

The openpyxl-based workbook processor is lazy-loaded.
Use explicit imports like:
    from ooxlate.processors.workbook_processor import WorkbookProcessor
"""

# Fast imports - regex extractor and text rules
from .text_extractor import TextExtractor, classify_part
from .text_filters import FragmentFilter, contains_cjk, is_valid_text_content
from .sheet_names import resolve_sheet_names, sanitize_sheet_name

# Lazy-loaded processors via __getattr__
_LAZY_IMPORTS = {
    'WorkbookProcessor': 'workbook_processor',
    'ArchiveReader': 'archive',
    'ArchiveWriter': 'archive',
    'ArchiveEntry': 'archive',
}

# Submodules that can be accessed via __getattr__ (for patching support)
_SUBMODULES = {'workbook_processor', 'archive', 'text_extractor', 'text_filters', 'sheet_names'}


def __getattr__(name: str):
    """Lazy-load processor modules on first access."""
    import importlib
    # Support accessing submodules directly (for unittest.mock.patch)
    if name in _SUBMODULES:
        return importlib.import_module(f'.{name}', __package__)
    if name in _LAZY_IMPORTS:
        module_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(f'.{module_name}', __package__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'TextExtractor',
    'classify_part',
    'FragmentFilter',
    'contains_cjk',
    'is_valid_text_content',
    'resolve_sheet_names',
    'sanitize_sheet_name',
    'WorkbookProcessor',
    'ArchiveReader',
    'ArchiveWriter',
    'ArchiveEntry',
]
