from __future__ import annotations

import sys
import threading
import zipfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Optional

import pytest


# Ensure the project root is importable when running `pytest` via its entrypoint
# (e.g., `uv run --extra test pytest`), where `sys.path[0]` may not be the repo root.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from ooxlate.config.settings import AppSettings  # noqa: E402


def bracket_translate(text: str) -> str:
    """Deterministic stand-in for a real translation."""
    return f"[zh]{text}"


def _response(content: Optional[str]):
    if content is None:
        return SimpleNamespace(choices=[])
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _stream(content: str):
    for piece in (content[: len(content) // 2], content[len(content) // 2:]):
        yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])


class FakeChatClient:
    """
    Mimics the part of openai.OpenAI used by the engine:
    client.chat.completions.create(model=..., messages=..., metadata=..., stream=...)
    """

    def __init__(
        self,
        translate: Callable[[str], Optional[str]] = bracket_translate,
        stream_only: bool = False,
        failures: int = 0,
        error_factory: Optional[Callable[[str], Exception]] = None,
    ):
        self.translate = translate
        self.stream_only = stream_only
        self.failures = failures
        self.error_factory = error_factory
        self.calls: list[dict] = []
        self._lock = threading.Lock()
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def _create(self, **kwargs):
        with self._lock:
            self.calls.append(kwargs)
            fail = self.failures > 0
            if fail:
                self.failures -= 1
        if fail:
            raise self.error_factory("backend unavailable")
        if self.stream_only and not kwargs.get("stream"):
            raise self.error_factory("This model only support stream mode, please enable the stream parameter")
        text = kwargs["messages"][-1]["content"]
        if kwargs.get("stream"):
            return _stream(self.translate(text) or "")
        return _response(self.translate(text))


def api_error(message: str) -> Exception:
    import httpx
    import openai

    request = httpx.Request("POST", "https://example.invalid/v1/chat/completions")
    response = httpx.Response(400, request=request)
    return openai.BadRequestError(message, response=response, body=None)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(api_key="test-key", retry_delay=0.0, cancel_grace_period=0.5)


@pytest.fixture
def fake_client() -> FakeChatClient:
    return FakeChatClient(error_factory=api_error)


def build_docx(path: Path, paragraphs: list[str], header: Optional[str] = None) -> Path:
    import docx

    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if header is not None:
        document.sections[0].header.paragraphs[0].text = header
    document.save(path)
    return path


def build_xlsx(path: Path, sheets: dict[str, dict[str, object]]) -> Path:
    import openpyxl

    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, cells in sheets.items():
        ws = wb.create_sheet(title)
        for coord, value in cells.items():
            ws[coord] = value
    wb.save(path)
    wb.close()
    return path


def read_entries(path: Path) -> dict[str, bytes]:
    with zipfile.ZipFile(path) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def corrupt_entry(path: Path, name: str, count: int = 20) -> Path:
    """Flip bytes inside the compressed data of one archive entry."""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    raw = bytearray(path.read_bytes())
    offset = info.header_offset
    name_len = int.from_bytes(raw[offset + 26:offset + 28], "little")
    extra_len = int.from_bytes(raw[offset + 28:offset + 30], "little")
    data_start = offset + 30 + name_len + extra_len
    count = min(count, info.compress_size - 2)
    for i in range(data_start + 1, data_start + 1 + count):
        raw[i] ^= 0xFF
    path.write_bytes(bytes(raw))
    return path
