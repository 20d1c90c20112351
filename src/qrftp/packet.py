from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import quote, unquote

from .constants import DATA, FINAL, HANDSHAKE, PROTOCOL_VERSION
from .errors import StructureError, VersionError

# same unreserved set as JavaScript's encodeURIComponent
_NAME_SAFE = "!~*'()"


class PacketType(str, enum.Enum):
    HANDSHAKE = HANDSHAKE
    DATA = DATA
    FINAL = FINAL


def encode_name(name: str) -> str:
    return quote(name, safe=_NAME_SAFE)


def decode_name(encoded: str, fallback: str | None = None) -> str | None:
    try:
        return unquote(encoded, errors="strict")
    except UnicodeDecodeError:
        return fallback


def _dumps(fields: dict[str, Any]) -> str:
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class Handshake:
    file_id: str
    name: str
    size: int
    total: int
    original_name: str | None = None
    version: int = PROTOCOL_VERSION

    kind = PacketType.HANDSHAKE

    def to_text(self) -> str:
        fields: dict[str, Any] = {
            "v": self.version,
            "fid": self.file_id,
            "typ": self.kind.value,
            "nam": self.name,
            "siz": self.size,
            "tot": self.total,
            "zip": True,
        }
        if self.original_name is not None:
            fields["ofn"] = self.original_name
        return _dumps(fields)


@dataclass(frozen=True, slots=True)
class Data:
    file_id: str
    seq: int
    data: str
    version: int = PROTOCOL_VERSION

    kind = PacketType.DATA

    def to_text(self) -> str:
        return _dumps({"v": self.version, "fid": self.file_id, "typ": self.kind.value, "seq": self.seq, "dat": self.data})


@dataclass(frozen=True, slots=True)
class Final:
    file_id: str
    checksum: str
    version: int = PROTOCOL_VERSION

    kind = PacketType.FINAL

    def to_text(self) -> str:
        return _dumps({"v": self.version, "fid": self.file_id, "typ": self.kind.value, "chk": self.checksum})


Packet = Union[Handshake, Data, Final]


def _int_field(obj: dict[str, Any], key: str, minimum: int | None = None) -> int:
    value = obj.get(key)
    # bool is an int subclass; never accept true/false as a number
    if not isinstance(value, int) or isinstance(value, bool):
        raise StructureError(f"field {key!r} must be an integer")
    if minimum is not None and value < minimum:
        raise StructureError(f"field {key!r} must be >= {minimum}, got {value}")
    return value


def _str_field(obj: dict[str, Any], key: str, *, required: bool = True) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise StructureError(f"field {key!r} must be a string")
    if required and not value:
        raise StructureError(f"field {key!r} must not be empty")
    return value


def parse_packet(raw: str | bytes) -> Packet:
    """Parse one decoded symbol into a packet.

    Raises StructureError for anything that is not a well-formed packet and
    VersionError when the envelope is valid but speaks another protocol version.
    """
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise StructureError(f"payload is not JSON: {exc}") from exc
    except RecursionError as exc:
        raise StructureError("payload nests too deeply") from exc
    if not isinstance(obj, dict):
        raise StructureError("payload is not a JSON object")

    version = _int_field(obj, "v")
    file_id = _str_field(obj, "fid")
    kind = _str_field(obj, "typ")
    if version != PROTOCOL_VERSION:
        raise VersionError(version, PROTOCOL_VERSION)

    if kind == HANDSHAKE:
        if obj.get("zip") is not True:
            raise StructureError("handshake must declare zip=true")
        original = obj.get("ofn")
        if original is not None and not isinstance(original, str):
            raise StructureError("field 'ofn' must be a string")
        size = _int_field(obj, "siz", minimum=0)
        total = _int_field(obj, "tot", minimum=0)
        # every chunk carries at least one base64 character
        if total > 4 * -(-size // 3):
            raise StructureError(f"{total} chunks cannot carry {size} bytes")
        return Handshake(
            file_id=file_id,
            name=_str_field(obj, "nam", required=False),
            size=size,
            total=total,
            original_name=original or None,
            version=version,
        )
    if kind == DATA:
        return Data(
            file_id=file_id,
            seq=_int_field(obj, "seq", minimum=1),
            data=_str_field(obj, "dat"),
            version=version,
        )
    if kind == FINAL:
        return Final(file_id=file_id, checksum=_str_field(obj, "chk"), version=version)
    raise StructureError(f"unknown packet type {kind!r}")
