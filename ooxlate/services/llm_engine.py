# ooxlate/services/llm_engine.py
"""
Single-fragment translation against an OpenAI-compatible chat completion API.

LLMTranslationEngine adds, on top of the raw API call:
- an exact-text cache shared by every caller of a run
- CJK gating (text without CJK is returned unchanged when enabled)
- bounded retries with linear back-off, aborted on cancellation
- a streaming fallback for models that reject non-streaming requests
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from openai import OpenAI, OpenAIError

from ooxlate.config.settings import AppSettings
from ooxlate.processors.text_filters import contains_cjk
from .cancellation import CancellationToken
from .exceptions import EngineFailureError, TranslationCancelledError

logger = logging.getLogger(__name__)

# Substring of the backend error returned by stream-only models
STREAM_ONLY_ERROR_MARKER = "only support stream mode"

# Passed on every request; some Qwen models think out loud otherwise
REQUEST_METADATA = {"enable_thinking": "false"}

ErrorCallback = Callable[[BaseException], None]


def truncate_for_log(text: str, max_length: int = 80) -> str:
    """Shorten text for log output, counting code points."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class TranslationCache:
    """
    Exact-text translation cache for the lifetime of the process.

    Keys are the raw source text (no normalisation). There is no eviction:
    a run translates a bounded set of documents and repeated fragments
    (headers, sheet names, labels) are the common case.

    Thread-safe: lookups share a read lock, stores take the write lock.
    """

    def __init__(self):
        self._cache: dict[str, str] = {}
        self._lock = _ReadWriteLock()
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, text: str) -> Optional[str]:
        """
        Get cached translation for text.

        Returns:
            Cached translation or None if not found
        """
        self._lock.acquire_read()
        try:
            translation = self._cache.get(text)
        finally:
            self._lock.release_read()

        with self._stats_lock:
            if translation is None:
                self._misses += 1
            else:
                self._hits += 1
        return translation

    def set(self, text: str, translation: str) -> None:
        self._lock.acquire_write()
        try:
            self._cache[text] = translation
        finally:
            self._lock.release_write()

    def clear(self) -> None:
        """Clear all cached translations and reset statistics."""
        self._lock.acquire_write()
        try:
            self._cache.clear()
        finally:
            self._lock.release_write()
        with self._stats_lock:
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        self._lock.acquire_read()
        try:
            return len(self._cache)
        finally:
            self._lock.release_read()

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        size = len(self)
        with self._stats_lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0.0
            return {
                "size": size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": f"{hit_rate:.1f}%",
            }


class LLMTranslationEngine:
    """
    Translates one fragment at a time. Safe to share between worker threads.
    """

    def __init__(
        self,
        settings: AppSettings,
        cache: Optional[TranslationCache] = None,
        client=None,
    ):
        """
        Args:
            settings: Backend, prompt and retry configuration
            cache: Shared cache. A private one is created when omitted.
            client: Object exposing chat.completions.create(); an OpenAI
                client is built from settings when omitted.

        Raises:
            EngineFailureError: If the API client cannot be created.
        """
        self.settings = settings
        self.cache = cache if cache is not None else TranslationCache()
        self._stream_only_models: set[str] = set()
        self._stream_lock = threading.Lock()

        if client is None:
            try:
                # Retries are ours so that cancellation can interrupt them
                client = OpenAI(
                    base_url=settings.base_url,
                    api_key=settings.resolve_api_key(),
                    timeout=settings.request_timeout,
                    max_retries=0,
                )
            except OpenAIError as e:
                raise EngineFailureError(f"Failed to initialize LLM client: {e}", e) from e
        self.client = client

    def _is_stream_only(self, model: str) -> bool:
        with self._stream_lock:
            return model in self._stream_only_models

    def _mark_stream_only(self, model: str) -> None:
        with self._stream_lock:
            if model not in self._stream_only_models:
                logger.info("Model %s only supports streaming, switching to stream mode", model)
            self._stream_only_models.add(model)

    def _messages(self, text: str) -> list[dict]:
        return [
            {"role": "system", "content": self.settings.prompt},
            {"role": "user", "content": text},
        ]

    def _complete(self, text: str) -> str:
        model = self.settings.model
        if self._is_stream_only(model):
            return self._complete_streaming(text)

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=self._messages(text),
                metadata=REQUEST_METADATA,
            )
        except OpenAIError as e:
            if STREAM_ONLY_ERROR_MARKER in str(e):
                self._mark_stream_only(model)
                return self._complete_streaming(text)
            raise

        if not response.choices:
            raise ValueError("empty response from LLM (no choices)")
        return response.choices[0].message.content or ""

    def _complete_streaming(self, text: str) -> str:
        stream = self.client.chat.completions.create(
            model=self.settings.model,
            messages=self._messages(text),
            metadata=REQUEST_METADATA,
            stream=True,
        )
        parts = []
        for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                parts.append(content)
        return "".join(parts)

    def translate(
        self,
        text: str,
        cancel_token: Optional[CancellationToken] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> str:
        """
        Translate a single fragment.

        Args:
            text: Source text
            cancel_token: Aborts the retry loop when cancelled
            on_error: Called once with the final error if all attempts fail

        Returns:
            Translated text (stripped), "" for blank input, or the input
            unchanged when CJK gating skips it.

        Raises:
            TranslationCancelledError: If cancelled before or between attempts.
            EngineFailureError: If every attempt failed.
        """
        if not text.strip():
            return ""

        if self.settings.only_translate_cjk and not contains_cjk(text):
            logger.debug("Skipping non-CJK text: %s", truncate_for_log(text))
            return text

        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Cache hit: %s", truncate_for_log(text))
            return cached

        max_attempts = max(1, self.settings.max_attempts)
        last_error: Optional[BaseException] = None
        for attempt in range(1, max_attempts + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                result = self._complete(text).strip()
                if not result:
                    raise ValueError("empty response from LLM")
                self.cache.set(text, result)
                logger.debug(
                    "Translated: %s -> %s",
                    truncate_for_log(text), truncate_for_log(result, 200),
                )
                return result
            except (OpenAIError, ValueError) as e:
                last_error = e
                logger.warning(
                    "Translation attempt %d/%d failed for %s: %s",
                    attempt, max_attempts, truncate_for_log(text), e,
                )

            if attempt < max_attempts:
                delay = self.settings.retry_delay * attempt
                if cancel_token is not None:
                    if cancel_token.wait(delay):
                        raise TranslationCancelledError("Translation cancelled during retry")
                else:
                    time.sleep(delay)

        error = EngineFailureError(
            f"Translation failed after {max_attempts} attempts: {last_error}", last_error,
        )
        logger.error("LLM translation failed for %s: %s", truncate_for_log(text), last_error)
        if on_error is not None:
            on_error(error)
        raise error
