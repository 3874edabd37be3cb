# ooxlate/processors/workbook_processor.py
"""
Workbook-object-model translation of .xlsx files (legacy mode).

Runs in three phases, each a single batch:
1. Sheet names (renamed through placeholders so openpyxl never de-duplicates)
2. String cells (formulas and non-string values are skipped)
3. Drawing text, rewritten directly in the saved archive

openpyxl does not round-trip shape text boxes, so phase 3 only finds drawing
parts that survived the save. The direct XML pipeline has no such loss and is
the default.
"""

import logging
import tempfile
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from ooxlate.models.types import PartKind, TranslationTask
from ooxlate.services.cancellation import CancellationToken
from ooxlate.services.events import Stage
from ooxlate.services.exceptions import ArchiveError, PartEncodingError
from .archive import ArchiveReader, ArchiveWriter
from .sheet_names import resolve_sheet_names
from .text_extractor import TextExtractor, classify_part

logger = logging.getLogger(__name__)

# (texts, stage, label) -> translations in the same order
BatchFunction = Callable[[Sequence[str], Stage, str], list[str]]

_PLACEHOLDER_PREFIX = "__ooxlate_tmp_"


class WorkbookProcessor:
    """Translates an .xlsx through openpyxl."""

    def __init__(self, extractor: TextExtractor):
        self.extractor = extractor

    def translate(
        self,
        input_path: Path,
        output_path: Path,
        translate_batch: BatchFunction,
        cancel_token: CancellationToken,
    ) -> None:
        """
        Translate input_path into output_path.

        Intermediate files live in a temporary directory that is removed on
        every exit path. output_path is only written by the last phase.

        Raises:
            TranslationCancelledError: Between or during phases.
            ArchiveError: If the workbook cannot be loaded or saved.
        """
        with tempfile.TemporaryDirectory(prefix="ooxlate_") as work_dir:
            staged = Path(work_dir) / "cells.xlsx"

            wb = self._load(input_path)
            try:
                cancel_token.raise_if_cancelled()
                self._translate_sheet_names(wb, translate_batch)

                cancel_token.raise_if_cancelled()
                self._translate_cells(wb, translate_batch)

                cancel_token.raise_if_cancelled()
                try:
                    wb.save(staged)
                except (OSError, ValueError) as e:
                    raise ArchiveError(f"Failed to save workbook: {e}") from e
            finally:
                wb.close()

            cancel_token.raise_if_cancelled()
            self._translate_drawings(staged, output_path, translate_batch, cancel_token)

    def _load(self, input_path: Path):
        try:
            return openpyxl.load_workbook(input_path)
        except (InvalidFileException, zipfile.BadZipFile, zlib.error, KeyError, OSError) as e:
            raise ArchiveError(f"Failed to load workbook {input_path.name}: {e}") from e

    def _translate_sheet_names(self, wb, translate_batch: BatchFunction) -> None:
        should_translate = self.extractor.fragment_filter.should_translate
        tasks = [TranslationTask(sheet=name, original_text=name) for name in wb.sheetnames]
        targets = [t for t in tasks if should_translate(t.original_text)]
        if not targets:
            return

        target_names = {t.sheet for t in targets}
        fixed = [t.sheet for t in tasks if t.sheet not in target_names]
        translated = translate_batch([t.original_text for t in targets], Stage.SHEET, "sheet names")
        final_names = resolve_sheet_names(translated, fixed_names=fixed)

        # Two steps so that no intermediate title collides with another sheet
        sheets = [wb[t.sheet] for t in targets]
        for i, ws in enumerate(sheets):
            ws.title = f"{_PLACEHOLDER_PREFIX}{i}"
        for ws, name in zip(sheets, final_names):
            ws.title = name

        for task, name in zip(targets, final_names):
            logger.debug("Renamed sheet %r -> %r", task.sheet, name)

    def _translate_cells(self, wb, translate_batch: BatchFunction) -> None:
        should_translate = self.extractor.fragment_filter.should_translate
        tasks: list[TranslationTask] = []
        for ws in wb.worksheets:
            for row in ws.iter_rows():
                for cell in row:
                    value = cell.value
                    if not isinstance(value, str) or cell.data_type == 'f':
                        continue
                    if value.startswith('='):
                        continue
                    if should_translate(value):
                        tasks.append(TranslationTask(
                            sheet=ws.title, original_text=value, cell_coord=cell.coordinate,
                        ))

        if not tasks:
            return

        # One request per distinct text
        unique_texts = list(dict.fromkeys(t.original_text for t in tasks))
        translated = translate_batch(unique_texts, Stage.CELL, "cells")
        mapping = dict(zip(unique_texts, translated))

        for task in tasks:
            wb[task.sheet][task.cell_coord].value = mapping[task.original_text]
        logger.debug("Updated %d cells (%d distinct texts)", len(tasks), len(unique_texts))

    def _translate_drawings(
        self,
        staged: Path,
        output_path: Path,
        translate_batch: BatchFunction,
        cancel_token: CancellationToken,
    ) -> None:
        with ArchiveReader(staged) as reader, ArchiveWriter(output_path) as writer:
            for entry in reader.entries():
                data = reader.read(entry)
                if classify_part(entry.name) != PartKind.DRAWING_TEXT:
                    writer.write(entry, data)
                    continue

                cancel_token.raise_if_cancelled()
                try:
                    content = data.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise PartEncodingError(f"{entry.name} is not valid UTF-8: {e}") from e

                content, items = self.extractor.extract(content, entry.name)
                if not items:
                    writer.write(entry, data)
                    continue

                translated = translate_batch([item.text for item in items], Stage.SHAPE, entry.name)
                content = self.extractor.apply(content, entry.name, items, translated)
                writer.write(entry, content.encode("utf-8"))
