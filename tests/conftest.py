from __future__ import annotations

import random

import pytest

from qrftp.packet import parse_packet
from qrftp.pacing import VirtualScheduler
from qrftp.sender import SenderSettings, Sequencer


class EmptyArchiver:
    """Packs everything into a zero-byte buffer, giving a transfer with no data chunks."""

    def pack(self, files):
        return b"", 0

    def unpack(self, buffer):
        return []

    def extract(self, buffer, name):
        return None


@pytest.fixture
def payload() -> bytes:
    # incompressible, so the archive spans several chunks
    return random.Random(1).randbytes(600)


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def sent() -> list[str]:
    return []


@pytest.fixture
def sequencer(sent, scheduler) -> Sequencer:
    return Sequencer(sent.append, scheduler, SenderSettings(chunk_size=100, delay_ms=200))


def kinds(texts):
    return [parse_packet(t).kind.value for t in texts]
