from __future__ import annotations

import io
import logging
import os
import zipfile
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from .errors import ArchiveError

logger = logging.getLogger(__name__)


class Archiver(Protocol):
    def pack(self, files: Mapping[str, bytes]) -> tuple[bytes, int]: ...

    def unpack(self, buffer: bytes) -> list[tuple[str, bytes]]: ...

    def extract(self, buffer: bytes, name: str) -> bytes | None: ...


class DownloadSink(Protocol):
    def deliver(self, buffer: bytes, filename: str) -> None: ...


class ZipArchiver:
    def __init__(self, compresslevel: int = 6):
        self.compresslevel = compresslevel

    def pack(self, files: Mapping[str, bytes]) -> tuple[bytes, int]:
        if not files:
            raise ArchiveError("nothing to archive")
        out = io.BytesIO()
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=self.compresslevel) as zf:
            for name, data in files.items():
                zf.writestr(name, data)
        buffer = out.getvalue()
        return buffer, len(buffer)

    def unpack(self, buffer: bytes) -> list[tuple[str, bytes]]:
        with self._open(buffer) as zf:
            return [(info.filename, zf.read(info)) for info in zf.infolist() if not info.is_dir()]

    def extract(self, buffer: bytes, name: str) -> bytes | None:
        with self._open(buffer) as zf:
            try:
                return zf.read(name)
            except KeyError:
                return None
            except zipfile.BadZipFile as exc:
                raise ArchiveError(f"cannot read {name!r}: {exc}") from exc

    @staticmethod
    def _open(buffer: bytes) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(io.BytesIO(buffer))
        except zipfile.BadZipFile as exc:
            raise ArchiveError(f"not a zip archive: {exc}") from exc


class DirectorySink:
    """Writes delivered files into a directory, keeping only the base name."""

    def __init__(self, directory: str | os.PathLike[str]):
        self.directory = Path(directory)
        self.written: list[Path] = []

    def deliver(self, buffer: bytes, filename: str) -> None:
        name = Path(filename.replace("\\", "/")).name or "downloaded_file"
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / name
        path.write_bytes(buffer)
        self.written.append(path)
        logger.info("wrote %s (%d bytes)", path, len(buffer))


class MemorySink:
    def __init__(self) -> None:
        self.deliveries: list[tuple[str, bytes]] = []

    def deliver(self, buffer: bytes, filename: str) -> None:
        self.deliveries.append((filename, bytes(buffer)))


def collect_files(paths: Iterable[str | os.PathLike[str]]) -> dict[str, bytes]:
    """Read files and directory trees into archive entries.

    Plain files are stored under their base name; files inside a directory
    keep their path relative to the directory's parent, so the folder name
    becomes the top-level entry.
    """
    files: dict[str, bytes] = {}
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for child in sorted(p for p in path.rglob("*") if p.is_file()):
                files[child.relative_to(path.parent).as_posix()] = child.read_bytes()
        else:
            files[path.name] = path.read_bytes()
    return files
