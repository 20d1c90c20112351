from __future__ import annotations


class TransferError(Exception):
    """Base class for everything the protocol raises."""


class StructureError(TransferError, ValueError):
    """Packet text is not a well-formed packet. Dropped by receivers."""


class VersionError(TransferError):
    def __init__(self, received: int, expected: int):
        super().__init__(f"incompatible protocol version: received {received}, expected {expected}")
        self.received = received
        self.expected = expected


class CapacityError(TransferError):
    """Data cannot fit in a symbol at the chosen error-correction level."""


class WrongSessionError(TransferError):
    def __init__(self, received: str, expected: str | None):
        super().__init__(f"packet for file id {received!r}, expected {expected!r}")
        self.received = received
        self.expected = expected


class VerificationError(TransferError):
    pass


class SizeMismatchError(VerificationError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"size mismatch: expected {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class ChecksumMismatchError(VerificationError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"checksum mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class ScannerError(TransferError):
    """Camera or decoder device could not be started."""


class ArchiveError(TransferError):
    """Archive could not be built or read."""


class PhaseError(TransferError, RuntimeError):
    """Operation is not allowed in the machine's current phase."""
