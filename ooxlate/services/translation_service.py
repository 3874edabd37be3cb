# ooxlate/services/translation_service.py
"""
Document-level translation pipeline.

Direct XML mode (default), per archive entry in order:
    unrecognised part -> copied with its original bytes and metadata
    recognised part   -> extract -> translate (batch) -> apply -> write

Workbook mode hands .xlsx files to WorkbookProcessor (openpyxl).

Either way the output is written to a temporary file beside the target and
moved into place only when the whole document succeeded.
"""

import html
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

from ooxlate.config.settings import AppSettings
from ooxlate.models.types import (
    SUPPORTED_EXTENSIONS,
    DocumentState,
    FileType,
    FragmentResult,
    PartKind,
    TranslationResult,
    TranslationStatus,
)
from ooxlate.processors.archive import ArchiveReader, ArchiveWriter
from ooxlate.processors.sheet_names import resolve_sheet_names
from ooxlate.processors.text_extractor import TextExtractor, classify_part, get_part_pattern
from ooxlate.processors.workbook_processor import WorkbookProcessor
from .batch_translator import BatchTranslator
from .cancellation import CancellationToken
from .events import (
    EventCallback,
    EventKind,
    EventStream,
    Stage,
    TranslationEvent,
    stage_for_part,
)
from .exceptions import (
    EngineFailureError,
    InvalidInputError,
    PartEncodingError,
    StructuralError,
    TranslationCancelledError,
)
from .llm_engine import LLMTranslationEngine, TranslationCache, truncate_for_log

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class _DocumentRun:
    """Per-document bookkeeping: events, state, counters and warnings."""

    def __init__(
        self,
        file: Path,
        translator: Optional[BatchTranslator],
        cancel_token: CancellationToken,
        on_event: Optional[EventCallback],
        abort_on_engine_failure: bool,
    ):
        self.file = str(file)
        self.translator = translator
        self.cancel_token = cancel_token
        self.on_event = on_event
        self.abort_on_engine_failure = abort_on_engine_failure
        self.state = DocumentState.IDLE
        self.fragments_translated = 0
        self.fragments_total = 0
        self.warnings: list[str] = []

    def emit(self, kind: EventKind, **fields) -> None:
        if self.on_event is not None:
            self.on_event(TranslationEvent(kind=kind, file=self.file, **fields))

    def set_state(self, state: DocumentState) -> None:
        logger.debug("%s: %s -> %s", self.file, self.state.value, state.value)
        self.state = state

    def translate_batch(self, texts: Sequence[str], stage: Stage, label: str) -> list[str]:
        """
        Translate one batch, reporting progress under stage.

        An engine failure is soft unless abort_on_engine_failure is set: the
        batch keeps its original texts and a warning is recorded.
        """
        self.fragments_total += len(texts)

        def on_result(result: FragmentResult) -> None:
            if result.succeeded:
                self.emit(
                    EventKind.TRANSLATED, stage=stage,
                    original=result.original, translated=result.translated,
                )
            self.emit(EventKind.PROGRESS, stage=stage, done=result.done, total=result.total)

        def on_error(error: BaseException) -> None:
            self.emit(EventKind.ERROR, stage=Stage.LLM, error=error)

        try:
            results = self.translator.translate_texts(
                texts,
                cancel_token=self.cancel_token,
                on_error=on_error,
                on_result=on_result,
                label=label,
            )
        except EngineFailureError as e:
            if self.abort_on_engine_failure:
                raise
            warning = f"{label}: translation failed, original text kept ({e})"
            logger.warning("%s: %s", self.file, warning)
            self.warnings.append(warning)
            return list(texts)

        self.fragments_translated += len(texts)
        return results


class TranslationService:
    """
    Translates .xlsx and .docx documents.

    One service owns one cache and one request semaphore, so the
    concurrency bound and cached translations are shared by every document
    it processes.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        engine: Optional[LLMTranslationEngine] = None,
        cache: Optional[TranslationCache] = None,
    ):
        """
        Args:
            settings: Configuration (defaults when omitted)
            engine: Pre-built engine; created lazily from settings otherwise
            cache: Shared cache for a lazily created engine
        """
        self.settings = settings or AppSettings()
        self._engine = engine
        self.cache = cache or (engine.cache if engine is not None else TranslationCache())
        self.extractor = TextExtractor(cjk_only=self.settings.only_translate_cjk)
        self._semaphore = threading.BoundedSemaphore(max(1, self.settings.max_concurrent_requests))
        self._lock = threading.Lock()
        self._cancel_token: Optional[CancellationToken] = None

    @property
    def engine(self) -> LLMTranslationEngine:
        """
        Translation engine, created on first use.

        Raises:
            EngineFailureError: If the engine cannot be constructed.
        """
        with self._lock:
            if self._engine is None:
                self._engine = LLMTranslationEngine(self.settings, cache=self.cache)
            return self._engine

    def _create_batch_translator(self) -> BatchTranslator:
        return BatchTranslator(
            self.engine,
            max_concurrent_requests=self.settings.max_concurrent_requests,
            semaphore=self._semaphore,
            grace_period=self.settings.cancel_grace_period,
        )

    def cancel(self) -> None:
        """Cancel the document currently being translated (thread-safe)."""
        with self._lock:
            token = self._cancel_token
        if token is not None:
            token.cancel("cancelled by user")

    def _validate_input(self, input_path: Path) -> FileType:
        if not input_path.is_file():
            raise InvalidInputError(f"Input file not found: {input_path}")
        file_type = SUPPORTED_EXTENSIONS.get(input_path.suffix.lower())
        if file_type is None:
            raise InvalidInputError(
                f"Unsupported file type: {input_path.suffix} "
                f"(supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))})"
            )
        return file_type

    def translate_file(
        self,
        input_path: PathLike,
        output_path: Optional[PathLike] = None,
        on_event: Optional[EventCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TranslationResult:
        """
        Translate one document.

        Args:
            input_path: .xlsx or .docx file
            output_path: Destination; '<stem>_translated<suffix>' when omitted
            on_event: Receives Start, Progress, Translated, Error and a final
                Complete event. May be called from worker threads.
            cancel_token: Cancels the run; cancel() works too

        Returns:
            TranslationResult. Nothing is written unless status is COMPLETED.
        """
        start_time = time.time()
        input_path = Path(input_path)
        token = cancel_token if cancel_token is not None else CancellationToken()
        with self._lock:
            self._cancel_token = token

        run = _DocumentRun(input_path, None, token, on_event, self.settings.abort_on_engine_failure)
        run.emit(EventKind.START)
        final_path: Optional[Path] = None

        try:
            file_type = self._validate_input(input_path)
            final_path = Path(output_path) if output_path else self.settings.generate_output_path(input_path)

            try:
                run.translator = self._create_batch_translator()
            except EngineFailureError as e:
                run.emit(EventKind.ERROR, stage=Stage.INIT, error=e)
                raise

            token.raise_if_cancelled()
            self._write_output(input_path, final_path, file_type, run)

        except TranslationCancelledError as e:
            run.set_state(DocumentState.CANCELLED)
            logger.info("Translation cancelled: %s", input_path.name)
            run.emit(EventKind.COMPLETE, error=e)
            return self._result(run, TranslationStatus.CANCELLED, input_path, None, start_time, str(e))

        except (StructuralError, EngineFailureError, OSError) as e:
            run.set_state(DocumentState.FAILED)
            logger.error("Translation failed for %s: %s", input_path.name, e)
            if not isinstance(e, EngineFailureError):
                run.emit(EventKind.ERROR, stage=Stage.FILEPROCESSOR, error=e)
            run.emit(EventKind.COMPLETE, error=e)
            return self._result(run, TranslationStatus.FAILED, input_path, None, start_time, str(e))

        finally:
            with self._lock:
                if self._cancel_token is token:
                    self._cancel_token = None

        run.set_state(DocumentState.DONE)
        logger.info(
            "Translated %s -> %s (%d/%d fragments, %.1fs)",
            input_path.name, final_path, run.fragments_translated, run.fragments_total,
            time.time() - start_time,
        )
        run.emit(EventKind.COMPLETE)
        return self._result(run, TranslationStatus.COMPLETED, input_path, final_path, start_time)

    def _result(
        self,
        run: _DocumentRun,
        status: TranslationStatus,
        input_path: Path,
        output_path: Optional[Path],
        start_time: float,
        error_message: Optional[str] = None,
    ) -> TranslationResult:
        return TranslationResult(
            status=status,
            input_path=input_path,
            output_path=output_path,
            state=run.state,
            fragments_translated=run.fragments_translated,
            fragments_total=run.fragments_total,
            duration_seconds=time.time() - start_time,
            error_message=error_message,
            warnings=list(run.warnings),
        )

    def _write_output(self, input_path: Path, final_path: Path, file_type: FileType, run: _DocumentRun) -> None:
        """Translate into a temp file beside final_path, then move it into place."""
        final_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{final_path.stem}.", suffix=".tmp", dir=final_path.parent,
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            if self.settings.pipeline_mode == "workbook" and file_type == FileType.EXCEL:
                run.set_state(DocumentState.TRANSLATING_PARTS)
                WorkbookProcessor(self.extractor).translate(
                    input_path, tmp_path, run.translate_batch, run.cancel_token,
                )
                run.set_state(DocumentState.REZIPPED)
            else:
                self._translate_parts(input_path, tmp_path, run)
            run.cancel_token.raise_if_cancelled()
            os.replace(tmp_path, final_path)
        finally:
            tmp_path.unlink(missing_ok=True)

    def _translate_parts(self, input_path: Path, tmp_path: Path, run: _DocumentRun) -> None:
        with ArchiveReader(input_path) as reader:
            entries = list(reader.entries())
            run.set_state(DocumentState.UNZIPPED)
            run.set_state(DocumentState.TRANSLATING_PARTS)

            with ArchiveWriter(tmp_path) as writer:
                for entry in entries:
                    run.cancel_token.raise_if_cancelled()
                    data = reader.read(entry)
                    kind = classify_part(entry.name)
                    if kind is None:
                        writer.write(entry, data)
                        continue
                    writer.write(entry, self._translate_part(entry.name, kind, data, run))

        run.set_state(DocumentState.REZIPPED)

    def _translate_part(self, part_name: str, kind: PartKind, data: bytes, run: _DocumentRun) -> bytes:
        try:
            content = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PartEncodingError(f"{part_name} is not valid UTF-8: {e}") from e

        content, items = self.extractor.extract(content, part_name)
        if not items:
            logger.debug("No translatable text in %s, copied unchanged", part_name)
            return data

        translations = run.translate_batch([item.text for item in items], stage_for_part(part_name), part_name)

        if kind == PartKind.SHEET_NAME:
            extracted_at = {item.match_start for item in items}
            fixed = [
                html.unescape(m.group(1))
                for m in get_part_pattern(kind).regex.finditer(content)
                if m.start() not in extracted_at
            ]
            translations = resolve_sheet_names(translations, fixed_names=fixed)

        for item, translated in zip(items, translations):
            logger.debug("%s: %s -> %s", part_name, truncate_for_log(item.text), truncate_for_log(translated))
        return self.extractor.apply(content, part_name, items, translations).encode("utf-8")

    def translate_files(
        self,
        jobs: Iterable[Union[PathLike, tuple[PathLike, Optional[PathLike]]]],
        on_event: Optional[EventCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[TranslationResult]:
        """
        Translate several documents in order.

        Each job is an input path or an (input, output) pair. A failed document
        does not stop the run; cancellation does.
        """
        token = cancel_token if cancel_token is not None else CancellationToken()
        results: list[TranslationResult] = []
        for job in jobs:
            if token.cancelled:
                logger.info("Batch run cancelled, %d documents done", len(results))
                break
            input_path, output_path = job if isinstance(job, tuple) else (job, None)
            results.append(self.translate_file(input_path, output_path, on_event, token))
        return results

    def translate_file_events(
        self,
        input_path: PathLike,
        output_path: Optional[PathLike] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_result: Optional[Callable[[TranslationResult], None]] = None,
    ) -> EventStream:
        """
        Run translate_file on a background thread.

        Returns:
            EventStream that yields the run's events and ends after Complete.
        """
        token = cancel_token if cancel_token is not None else CancellationToken()
        stream = EventStream(self.settings.event_queue_size)

        def worker() -> None:
            try:
                result = self.translate_file(
                    input_path, output_path, lambda event: stream.emit(event, token), token,
                )
                if on_result is not None:
                    on_result(result)
            finally:
                stream.close()

        thread = threading.Thread(target=worker, name="ooxlate-pipeline", daemon=True)
        thread.start()
        return stream
