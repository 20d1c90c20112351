from __future__ import annotations

import secrets
import time
from dataclasses import dataclass

from .constants import MULTI_FILE_ARCHIVE_NAME
from .packet import Handshake, decode_name, encode_name


def new_file_id() -> str:
    return f"fid_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


@dataclass(frozen=True, slots=True)
class TransferSession:
    """Metadata for one transfer attempt, shared by both ends through the handshake."""

    file_id: str
    total_data_chunks: int
    archive_size: int
    archive_name: str = MULTI_FILE_ARCHIVE_NAME
    original_filename: str | None = None

    def __post_init__(self) -> None:
        if not self.file_id:
            raise ValueError("file id must not be empty")
        if self.total_data_chunks < 0 or self.archive_size < 0:
            raise ValueError("chunk count and archive size must be non-negative")

    @property
    def download_name(self) -> str:
        return self.original_filename or self.archive_name or MULTI_FILE_ARCHIVE_NAME

    def handshake(self) -> Handshake:
        return Handshake(
            file_id=self.file_id,
            name=encode_name(self.archive_name),
            size=self.archive_size,
            total=self.total_data_chunks,
            original_name=encode_name(self.original_filename) if self.original_filename else None,
        )

    @classmethod
    def from_handshake(cls, packet: Handshake) -> "TransferSession":
        archive_name = decode_name(packet.name, MULTI_FILE_ARCHIVE_NAME) or MULTI_FILE_ARCHIVE_NAME
        original = decode_name(packet.original_name) if packet.original_name else None
        return cls(
            file_id=packet.file_id,
            total_data_chunks=packet.total,
            archive_size=packet.size,
            archive_name=archive_name,
            original_filename=original or None,
        )
