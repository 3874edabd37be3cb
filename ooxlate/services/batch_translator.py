# ooxlate/services/batch_translator.py
"""
Bounded-concurrency translation of a batch of fragments.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Optional, Sequence

from ooxlate.models.types import FragmentResult, ResultCallback
from .cancellation import CancellationToken
from .exceptions import TranslationCancelledError
from .llm_engine import ErrorCallback, LLMTranslationEngine

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]        # (done, total)
TranslatedCallback = Callable[[str, str], None]      # (original, translated)


class BatchTranslator:
    """
    Translates a list of fragments with at most K requests in flight.

    Results are addressed by index, so the output order matches the input
    order whatever order the requests complete in. The first engine failure
    cancels the remaining work of the batch (fail-fast) and is re-raised.

    Pass the same semaphore to several translators (or reuse one translator)
    to make K a global bound across concurrent batches.
    """

    DEFAULT_MAX_CONCURRENT_REQUESTS = 5
    DEFAULT_GRACE_PERIOD = 2.0      # Seconds to wait for in-flight calls after cancel
    POLL_INTERVAL = 0.05            # Seconds between cancellation checks while blocked

    def __init__(
        self,
        engine: LLMTranslationEngine,
        max_concurrent_requests: Optional[int] = None,
        semaphore: Optional[threading.Semaphore] = None,
        grace_period: Optional[float] = None,
    ):
        self.engine = engine
        self.max_concurrent_requests = max(
            1, max_concurrent_requests or self.DEFAULT_MAX_CONCURRENT_REQUESTS
        )
        self._semaphore = semaphore or threading.BoundedSemaphore(self.max_concurrent_requests)
        self.grace_period = self.DEFAULT_GRACE_PERIOD if grace_period is None else grace_period

    @property
    def semaphore(self) -> threading.Semaphore:
        return self._semaphore

    def _acquire_slot(self, token: CancellationToken) -> bool:
        """Wait for a request slot. Returns False if cancelled first."""
        while not token.cancelled:
            if self._semaphore.acquire(timeout=self.POLL_INTERVAL):
                return True
        return False

    def translate_texts(
        self,
        texts: Sequence[str],
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_translated: Optional[TranslatedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_result: Optional[ResultCallback] = None,
        label: str = "",
    ) -> list[str]:
        """
        Translate texts concurrently.

        Args:
            texts: Fragments to translate
            cancel_token: Run-level token; the batch works on a child of it
            on_progress: Called with (done, total) after each finished fragment
            on_translated: Called with (original, translated) for each success
            on_error: Called once per batch, with the failure that wins
                fail-fast; failures of sibling requests are not reported
            on_result: Called with a FragmentResult after each finished
                fragment, successful or failed
            label: Name used in log lines (usually the part name)

        Returns:
            Translations in input order.

        Raises:
            TranslationCancelledError: If cancel_token was cancelled.
            EngineFailureError: The first fragment failure of the batch.

        Callbacks run on worker threads, one at a time, and must not block.
        Nothing is reported once the batch has returned or raised, so
        requests abandoned after the grace period stay silent.
        """
        total = len(texts)
        parent = cancel_token if cancel_token is not None else CancellationToken()
        parent.raise_if_cancelled()
        if total == 0:
            return []

        batch_token = parent.child()
        results: list[str] = [""] * total
        first_error: list[BaseException] = []
        state_lock = threading.Lock()
        # Held while reporting; closed is set under it once the batch resolves
        report_lock = threading.Lock()
        closed = False
        done = 0

        logger.info(
            "Translating %d fragments%s with up to %d concurrent requests",
            total, f" in {label}" if label else "", self.max_concurrent_requests,
        )

        def finish_one(
            index: int,
            text: str,
            translated: str = "",
            error: Optional[BaseException] = None,
            report_error: bool = False,
        ) -> None:
            nonlocal done
            with report_lock:
                if closed:
                    # Abandoned after the grace period
                    return
                done += 1
                if error is None:
                    results[index] = translated
                    if on_translated is not None:
                        on_translated(text, translated)
                elif report_error and on_error is not None:
                    on_error(error)
                if on_result is not None:
                    on_result(FragmentResult(text, translated, error, done, total))
                if on_progress is not None:
                    on_progress(done, total)

        def run(index: int, text: str) -> None:
            if batch_token.cancelled or not self._acquire_slot(batch_token):
                return
            try:
                if batch_token.cancelled:
                    return
                translated = self.engine.translate(text, batch_token)
            except TranslationCancelledError:
                return
            except Exception as e:
                with state_lock:
                    first = not first_error
                    if first:
                        first_error.append(e)
                batch_token.cancel("batch failed")
                finish_one(index, text, error=e, report_error=first)
                return
            finally:
                self._semaphore.release()

            finish_one(index, text, translated)

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrent_requests, total),
            thread_name_prefix="ooxlate-llm",
        )
        try:
            pending = {executor.submit(run, i, text) for i, text in enumerate(texts)}
            while pending and not batch_token.cancelled:
                _, pending = wait(pending, timeout=self.POLL_INTERVAL)
            if pending:
                # Only in-flight requests remain; queued ones exit at their first check
                _, pending = wait(pending, timeout=self.grace_period)
                if pending:
                    logger.warning(
                        "%d requests still running after %.1fs grace period, abandoning",
                        len(pending), self.grace_period,
                    )
        finally:
            with report_lock:
                closed = True
            executor.shutdown(wait=False, cancel_futures=True)
            parent.release_child(batch_token)

        if parent.cancelled:
            logger.info("Batch%s cancelled after %d/%d fragments", f" {label}" if label else "", done, total)
            raise TranslationCancelledError(f"Translation {parent.reason or 'cancelled'}")
        if first_error:
            raise first_error[0]
        if batch_token.cancelled:
            raise TranslationCancelledError(f"Translation {batch_token.reason or 'cancelled'}")
        return results
