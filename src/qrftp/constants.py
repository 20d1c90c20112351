from __future__ import annotations

PROTOCOL_VERSION = 1

HANDSHAKE = "h"
DATA = "d"
FINAL = "f"

MULTI_FILE_ARCHIVE_NAME = "transfer_archive.zip"

# conservative byte budgets per QR error-correction level
CAPACITY_ESTIMATES = {
    "L": 2000,
    "M": 1500,
    "Q": 1100,
    "H": 800,
}
DEFAULT_LEVEL = "M"
CHUNK_SIZE_BUFFER = 150

MIN_CHUNK_SIZE = 100
MAX_CHUNK_SIZE_LIMIT = 2900
DEFAULT_CHUNK_SIZE = 1000

DEFAULT_DELAY_MS = 500
MIN_DELAY_MS = 50

RATE_UPDATE_INTERVAL_MS = 1000
CHECKSUM_MODULUS = 65536
