# ooxlate/processors/archive.py
"""
Reading and writing the ZIP container of an OOXML document.

Entries are rewritten with the metadata they were read with (compression
method, timestamp, attributes) so that untouched parts come out identical.
"""

import logging
import posixpath
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Union

from ooxlate.services.exceptions import ArchiveError, PathTraversalError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def validate_entry_name(name: str) -> str:
    """
    Reject entry names that could escape an extraction directory.

    Raises:
        PathTraversalError: For absolute paths, drive letters or '..' segments.
    """
    normalized = name.replace("\\", "/")
    if not normalized or normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
        raise PathTraversalError(name)
    if ".." in normalized.split("/"):
        raise PathTraversalError(name)
    return name


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    compress_type: int = zipfile.ZIP_DEFLATED
    date_time: tuple = (1980, 1, 1, 0, 0, 0)
    external_attr: int = 0
    comment: bytes = b""

    @classmethod
    def from_info(cls, info: zipfile.ZipInfo) -> "ArchiveEntry":
        return cls(
            name=info.filename,
            compress_type=info.compress_type,
            date_time=info.date_time,
            external_attr=info.external_attr,
            comment=info.comment,
        )

    def to_info(self) -> zipfile.ZipInfo:
        info = zipfile.ZipInfo(self.name, date_time=self.date_time)
        info.compress_type = self.compress_type
        info.external_attr = self.external_attr
        info.comment = self.comment
        return info

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")


class ArchiveReader:
    """
    Read-only view of an OOXML archive.

    Usage:
        with ArchiveReader(path) as reader:
            for entry in reader.entries():
                data = reader.read(entry)
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._zip: zipfile.ZipFile | None = None

    def __enter__(self) -> "ArchiveReader":
        try:
            self._zip = zipfile.ZipFile(self.path, "r")
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"Not a valid OOXML archive: {self.path.name}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"Cannot open archive {self.path}: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def _require_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ArchiveError("Archive is not open")
        return self._zip

    def entries(self) -> Iterator[ArchiveEntry]:
        """Entries in archive order. Every name is validated first."""
        infos = self._require_open().infolist()
        for info in infos:
            validate_entry_name(info.filename)
        for info in infos:
            yield ArchiveEntry.from_info(info)

    def read(self, entry: ArchiveEntry) -> bytes:
        """
        Raises:
            ArchiveError: If the entry is missing, corrupt, encrypted or uses
                an unsupported compression method.
        """
        try:
            return self._require_open().read(entry.name)
        except (zipfile.BadZipFile, zlib.error, KeyError, OSError, RuntimeError, NotImplementedError) as e:
            raise ArchiveError(f"Failed to read {entry.name}: {e}") from e


class ArchiveWriter:
    """Writes entries into a new archive, preserving per-entry metadata."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._zip: zipfile.ZipFile | None = None

    def __enter__(self) -> "ArchiveWriter":
        try:
            self._zip = zipfile.ZipFile(self.path, "w")
        except OSError as e:
            raise ArchiveError(f"Cannot create archive {self.path}: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def write(self, entry: ArchiveEntry, content: bytes) -> None:
        validate_entry_name(entry.name)
        if self._zip is None:
            raise ArchiveError("Archive is not open")
        try:
            self._zip.writestr(entry.to_info(), content)
        except (OSError, zipfile.LargeZipFile) as e:
            raise ArchiveError(f"Failed to write {entry.name}: {e}") from e


def extract_all(path: PathLike, dest: PathLike) -> list[Path]:
    """
    Extract every entry of path into dest.

    Raises:
        PathTraversalError: If an entry would land outside dest.
        ArchiveError: If the archive cannot be read.
    """
    dest_root = Path(dest).resolve()
    written: list[Path] = []
    with ArchiveReader(path) as reader:
        for entry in reader.entries():
            target = (dest_root / posixpath.normpath(entry.name)).resolve()
            try:
                target.relative_to(dest_root)
            except ValueError:
                raise PathTraversalError(entry.name) from None
            if entry.is_dir:
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(reader.read(entry))
            written.append(target)
    logger.debug("Extracted %d entries from %s", len(written), path)
    return written

