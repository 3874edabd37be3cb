# ooxlate/services/__init__.py
"""
Service layer for ooxlate.

Services that pull in the openai client are lazy-loaded.
Use explicit imports like:
    from ooxlate.services.translation_service import TranslationService
"""

# Fast imports - basic types
from .cancellation import CancellationToken
from .events import EventKind, EventStream, Stage, TranslationEvent
from .exceptions import (
    EngineFailureError,
    OoxlateError,
    StructuralError,
    TranslationCancelledError,
)

# Lazy-loaded services via __getattr__
_LAZY_IMPORTS = {
    'TranslationService': 'translation_service',
    'BatchTranslator': 'batch_translator',
    'LLMTranslationEngine': 'llm_engine',
    'TranslationCache': 'llm_engine',
}

# Submodules that can be accessed via __getattr__ (for patching support)
_SUBMODULES = {'translation_service', 'batch_translator', 'llm_engine'}


def __getattr__(name: str):
    """Lazy-load heavy service modules on first access."""
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
    'CancellationToken',
    'EventKind',
    'EventStream',
    'Stage',
    'TranslationEvent',
    'OoxlateError',
    'StructuralError',
    'EngineFailureError',
    'TranslationCancelledError',
    'TranslationService',
    'BatchTranslator',
    'LLMTranslationEngine',
    'TranslationCache',
]
