"""QR File Transfer Protocol (qrftp)

Moves files between two devices that share nothing but a line of sight:
the sender shows a paced sequence of QR symbols, the receiver scans them.

- packet framing and capacity planning are separate from the two state machines
- the sender never sleeps; pacing goes through a cancellable scheduler
- the receiver tolerates loss, duplication and reordering, and verifies before delivery
"""

from .errors import (
    CapacityError,
    ChecksumMismatchError,
    ScannerError,
    SizeMismatchError,
    StructureError,
    TransferError,
    VersionError,
    WrongSessionError,
)
from .packet import Data, Final, Handshake, parse_packet
from .receiver import Assembler, ReceiverPhase
from .sender import SenderPhase, SenderSettings, Sequencer

__all__ = [
    "Assembler",
    "CapacityError",
    "ChecksumMismatchError",
    "Data",
    "Final",
    "Handshake",
    "ReceiverPhase",
    "ScannerError",
    "SenderPhase",
    "SenderSettings",
    "Sequencer",
    "SizeMismatchError",
    "StructureError",
    "TransferError",
    "VersionError",
    "WrongSessionError",
    "parse_packet",
]
