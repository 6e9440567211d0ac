"""Fixed-capacity FIFO of encoded video frames shared by producer and sender."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Iterable, Optional

DEFAULT_CAPACITY = 32

SPS_HEADER = 0x67
PPS_HEADER = 0x68
SPS_CAPTURE_LENGTH = 9
PPS_CAPTURE_LENGTH = 4
_START_CODE_LENGTH = 4


class FrameType(IntEnum):
    """Kind of picture a frame holds."""

    I = 0  # noqa: E741
    P = 1
    B = 2


@dataclass(frozen=True)
class Frame:
    """One encoded frame as stored in the FIFO."""

    data: bytes
    frame_type: FrameType

    @property
    def size(self) -> int:
        return len(self.data)


class RingFifo:
    """Bounded queue of frames; new frames are dropped while it is full."""

    def __init__(self, capacity=DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._frames: deque[Frame] = deque()

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def full(self) -> bool:
        return len(self._frames) >= self.capacity

    def put(self, data, frame_type) -> bool:
        """Queue a frame; returns False if the FIFO was full and it was dropped."""
        if self.full:
            return False
        self._frames.append(Frame(bytes(data), FrameType(frame_type)))
        return True

    def get(self) -> Optional[Frame]:
        """Remove and return the oldest frame, or None when empty."""
        if not self._frames:
            return None
        return self._frames.popleft()

    def reset(self) -> None:
        """Discard every queued frame."""
        self._frames.clear()

    def put_stream(
        self,
        packs: Iterable[bytes],
        on_sps: Optional[Callable[[bytes], None]] = None,
        on_pps: Optional[Callable[[bytes], None]] = None,
    ) -> bool:
        """Join the packs of one encoded picture into a single frame.

        Each pack starts with a four-byte start code. A pack whose NAL header
        is an SPS marks the frame as a key frame and its first bytes are handed
        to ``on_sps``; a PPS pack is handed to ``on_pps``. Returns False, with
        no callback made, if the FIFO is full.
        """
        packs = [bytes(pack) for pack in packs]
        if self.full:
            return False

        key_frame = False
        for pack in packs:
            if len(pack) <= _START_CODE_LENGTH:
                continue
            header = pack[_START_CODE_LENGTH]
            nal = pack[_START_CODE_LENGTH:]
            if header == SPS_HEADER:
                key_frame = True
                if on_sps is not None:
                    on_sps(nal[:SPS_CAPTURE_LENGTH])
            elif header == PPS_HEADER and on_pps is not None:
                on_pps(nal[:PPS_CAPTURE_LENGTH])

        frame_type = FrameType.I if key_frame else FrameType.P
        self._frames.append(Frame(b"".join(packs), frame_type))
        return True