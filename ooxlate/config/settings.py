# ooxlate/config/settings.py
"""
Settings management for ooxlate.

Settings are split across two files in the same directory:
- settings.template.json: shipped defaults, replaced on upgrade
- user_settings.json: only the keys the user changed
The template is loaded first and user settings override it.

load() caches instances per path and reloads when either file's mtime changes.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

# Module logger
logger = logging.getLogger(__name__)

# path -> ((template mtime, user mtime), AppSettings)
_settings_cache: dict[str, tuple[tuple[float, float], "AppSettings"]] = {}
_settings_cache_lock = threading.Lock()

# Keys written to user_settings.json
USER_SETTINGS_KEYS = {
    "base_url",
    "api_key",
    "model",
    "prompt",
    "max_concurrent_requests",
    "only_translate_cjk",
    "request_timeout",
    "pipeline_mode",
    "abort_on_engine_failure",
    "output_directory",
}

# Environment variables consulted when api_key is empty, in order
API_KEY_ENV_VARS = ("OOXLATE_API_KEY", "DASHSCOPE_API_KEY")

PIPELINE_MODES = ("xml", "workbook")

DEFAULT_PROMPT = (
    "You are a professional translator. Translate Japanese to Simplified Chinese directly. "
    "Keep all alphanumeric characters unchanged. Ensure accuracy of technical terms. "
    "No explanations needed."
)


def _settings_files(path: Path) -> tuple[Path, Path]:
    return path.parent / "settings.template.json", path.parent / "user_settings.json"


def _mtime(path: Path) -> float:
    return path.stat().st_mtime if path.exists() else 0.0


def _read_json(path: Path) -> dict:
    """Parse one settings file. Missing or unreadable files count as empty."""
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Failed to load settings from %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return {}
    logger.debug("Loaded settings from: %s", path)
    return data


@dataclass
class AppSettings:
    """Application settings"""

    # LLM backend (OpenAI-compatible)
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key: str = ""                   # Empty = read from environment
    model: str = "qwen-turbo-latest"
    prompt: str = DEFAULT_PROMPT

    # Translation
    max_concurrent_requests: int = 5    # Global bound on in-flight requests
    only_translate_cjk: bool = True     # Skip fragments without CJK characters

    # Advanced
    request_timeout: int = 60           # Seconds per request
    max_attempts: int = 3               # Attempts per fragment, including the first
    retry_delay: float = 0.2            # Seconds, multiplied by the attempt number
    cancel_grace_period: float = 2.0    # Seconds to wait for in-flight requests on cancel

    # Pipeline
    pipeline_mode: str = "xml"          # "xml" (direct part rewrite) or "workbook" (openpyxl)
    abort_on_engine_failure: bool = False
    event_queue_size: int = 32

    # Output
    output_directory: Optional[str] = None  # None = same as input

    @classmethod
    def load(cls, path: Path) -> "AppSettings":
        """Load settings from the template and user files beside path.

        Only the directory of path is used. The instance is cached until
        either file's mtime changes; callers must not mutate it.
        """
        template_path, user_path = _settings_files(path)
        cache_key = str(path.resolve())
        stamp = (_mtime(template_path), _mtime(user_path))

        with _settings_cache_lock:
            cached = _settings_cache.get(cache_key)
        if cached is not None and cached[0] == stamp:
            logger.debug("Using cached settings for: %s", path)
            return cached[1]

        data = _read_json(template_path)
        user_data = _read_json(user_path)
        data.update((k, v) for k, v in user_data.items() if k in USER_SETTINGS_KEYS)

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.debug("Ignoring unknown settings keys: %s", ", ".join(unknown))

        settings = cls(**{k: v for k, v in data.items() if k in known})
        settings._validate()

        with _settings_cache_lock:
            _settings_cache[cache_key] = (stamp, settings)
        return settings

    def _validate(self) -> None:
        """Validate setting values.

        Out-of-range values are reset to defaults with a warning.
        """
        if not 1 <= self.max_concurrent_requests <= 64:
            logger.warning(
                "max_concurrent_requests out of range (%d), resetting to 5", self.max_concurrent_requests
            )
            self.max_concurrent_requests = 5

        if self.request_timeout < 5:
            logger.warning("request_timeout too small (%d), resetting to 60", self.request_timeout)
            self.request_timeout = 60
        elif self.request_timeout > 600:
            logger.warning("request_timeout too large (%d), resetting to 60", self.request_timeout)
            self.request_timeout = 60

        if not 1 <= self.max_attempts <= 10:
            logger.warning("max_attempts out of range (%d), resetting to 3", self.max_attempts)
            self.max_attempts = 3

        if self.retry_delay < 0:
            self.retry_delay = 0.2
        if self.cancel_grace_period < 0:
            self.cancel_grace_period = 2.0
        if self.event_queue_size < 1:
            self.event_queue_size = 32

        if self.pipeline_mode not in PIPELINE_MODES:
            logger.warning("Unknown pipeline_mode %r, resetting to 'xml'", self.pipeline_mode)
            self.pipeline_mode = "xml"

    def save(self, path: Path) -> None:
        """Write the user keys to user_settings.json beside path.

        The template is never modified.
        """
        template_path, user_path = _settings_files(path)
        user_path.parent.mkdir(parents=True, exist_ok=True)

        data = {key: getattr(self, key) for key in sorted(USER_SETTINGS_KEYS)}
        with open(user_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.debug("Saved user settings to: %s", user_path)

        with _settings_cache_lock:
            _settings_cache[str(path.resolve())] = ((_mtime(template_path), _mtime(user_path)), self)

    def resolve_api_key(self) -> Optional[str]:
        """Configured api_key, else the first non-empty environment variable, else None."""
        if self.api_key:
            return self.api_key
        for name in API_KEY_ENV_VARS:
            value = os.environ.get(name)
            if value:
                return value
        return None

    def get_output_directory(self, input_path: Path) -> Path:
        """
        Get output directory for translated file.
        Returns input file's directory if output_directory is None.
        """
        if self.output_directory:
            return Path(self.output_directory)
        return input_path.parent

    def generate_output_path(self, input_path: Path) -> Path:
        """
        Build '<stem>_translated<suffix>' in the output directory, numbered
        (_translated_2, _translated_3, ...) until the path does not exist.
        """
        output_dir = self.get_output_directory(input_path)
        candidate = output_dir / f"{input_path.stem}_translated{input_path.suffix}"
        counter = 2
        while candidate.exists():
            candidate = output_dir / f"{input_path.stem}_translated_{counter}{input_path.suffix}"
            counter += 1
        return candidate


def get_default_settings_path() -> Path:
    """Get default settings file path"""
    return Path.home() / ".ooxlate" / "settings.json"


def invalidate_settings_cache(path: Optional[Path] = None) -> None:
    """Invalidate settings cache.

    Args:
        path: Clear only this path's entry. None clears everything.
    """
    with _settings_cache_lock:
        if path is None:
            _settings_cache.clear()
            logger.debug("Cleared all settings cache")
        else:
            cache_key = str(path.resolve())
            if cache_key in _settings_cache:
                del _settings_cache[cache_key]
                logger.debug("Cleared settings cache for: %s", path)
