"""RTSP helpers: status texts, TCP helpers, client buffers and the RTP scheduler."""

from __future__ import annotations

import ipaddress
import socket
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

RTSP_VERSION = "RTSP/1.0"
RTSP_EOL = "\r\n"
SERVER_NAME = "sunshine"
SERVER_VERSION = "1.11"
RTSP_DEFAULT_PORT = 554

RTSP_BUFFERSIZE = 4096
MAX_DESCR_LENGTH = 4096
OUTPUT_BUFFER_SIZE = RTSP_BUFFERSIZE + MAX_DESCR_LENGTH
MAX_CONNECTION = 10

HDR_CONTENTLENGTH = "Content-Length"
HDR_CSEQ = "CSeq"
HDR_SESSION = "Session"
HDR_TRANSPORT = "Transport"

# Frame type value the ring buffer uses for key frames.
_FRAME_TYPE_I = 0

_STATUS_TEXT = {
    100: "Continue",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Moved Temporarily",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Time-out",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Request Entity Too Large",
    414: "Request-URI Too Large",
    415: "Unsupported Media Type",
    420: "Bad Extension",
    450: "Invalid Parameter",
    451: "Parameter Not Understood",
    452: "Conference Not Found",
    453: "Not Enough Bandwidth",
    454: "Session Not Found",
    455: "Method Not Valid In This State",
    456: "Header Field Not Valid for Resource",
    457: "Invalid Range",
    458: "Parameter Is Read-Only",
    461: "Unsupported transport",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Time-out",
    505: "RTSP Version Not Supported",
    551: "Option not supported",
    911: "Extended Error:",
}


class OutputOverflowError(Exception):
    """Raised when a reply does not fit in a client's output buffer."""


class TransportType(IntEnum):
    """Transport negotiated for an RTP session."""

    NONE = 0
    RTP_AVP = 1
    RTP_AVP_TCP = 2


@dataclass
class RtpSession:
    """One RTP stream set up for a client."""

    sender: Any = None
    transport: TransportType = TransportType.NONE
    client_ports: tuple[int, int] = (0, 0)
    server_ports: tuple[int, int] = (0, 0)
    interleaved: tuple[int, int] = (0, 0)
    is_multicast: bool = False
    paused: bool = True
    started: bool = False
    schedule_id: int = -1


def status_text(code: int) -> Optional[str]:
    """Reason phrase for an RTSP status code, or None if the code is unknown."""
    return _STATUS_TEXT.get(code)


def format_address(address) -> str:
    """Host part of an IPv4 socket address as dotted text."""
    host = address[0] if isinstance(address, tuple) else address
    try:
        return str(ipaddress.IPv4Address(host))
    except (ipaddress.AddressValueError, ValueError) as exc:
        raise ValueError(f"not an IPv4 address: {address!r}") from exc


def tcp_listen(port: int) -> socket.socket:
    """Open a non-blocking TCP socket listening on all interfaces."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("", port))
        sock.setblocking(False)
        sock.listen(socket.SOMAXCONN)
    except OSError:
        sock.close()
        raise
    return sock


def tcp_write(sock: socket.socket, data: bytes) -> None:
    """Send all of ``data``; raises ConnectionError if the peer stops taking it."""
    view = memoryview(data)
    while view:
        sent = sock.send(view)
        if sent <= 0:
            raise ConnectionError(f"send stopped with {len(view)} bytes unsent")
        view = view[sent:]


class ClientBuffer:
    """Input and output buffers and protocol state of one RTSP client."""

    def __init__(self, sock, address=None):
        self.sock = sock
        self.address = address
        self.input = bytearray()
        self.output = bytearray()
        self.cseq = 0
        self.session: Any = None

    def write(self, data) -> None:
        """Queue ``data`` for sending to the client."""
        if isinstance(data, str):
            data = data.encode("latin-1")
        if len(self.output) + len(data) > OUTPUT_BUFFER_SIZE:
            raise OutputOverflowError("not enough free space in the output buffer")
        self.output += data

    def send_reply(self, code: int) -> None:
        """Queue a bare status reply carrying the current CSeq."""
        text = status_text(code) or ""
        self.write(
            f"{RTSP_VERSION} {code} {text}{RTSP_EOL}"
            f"CSeq: {self.cseq}{RTSP_EOL}{RTSP_EOL}"
        )

    def take_output(self) -> bytes:
        """Return everything queued for sending and clear the queue."""
        data = bytes(self.output)
        self.output.clear()
        return data


@dataclass
class _Slot:
    session: RtpSession
    begin_frame: bool = field(default=False)


class Scheduler:
    """Fixed table of RTP sessions that are fed frames from the ring buffer."""

    def __init__(self, capacity=MAX_CONNECTION):
        self._slots: list[Optional[_Slot]] = [None] * capacity
        self.playing = 0

    def add(self, session: RtpSession) -> int:
        """Put a session in the first free slot and return its id."""
        for schedule_id, slot in enumerate(self._slots):
            if slot is None:
                self._slots[schedule_id] = _Slot(session)
                return schedule_id
        raise RuntimeError("no free schedule slot")

    def _slot(self, schedule_id: int) -> _Slot:
        slot = self._slots[schedule_id]
        if slot is None:
            raise KeyError(schedule_id)
        return slot

    def start(self, schedule_id: int) -> None:
        """Unpause a scheduled session and count it as playing."""
        session = self._slot(schedule_id).session
        session.paused = False
        session.started = True
        self.playing += 1

    def remove(self, schedule_id: int) -> None:
        """Free a slot; freeing an empty slot does nothing."""
        self._slots[schedule_id] = None

    def is_scheduled(self, schedule_id: int) -> bool:
        return self._slots[schedule_id] is not None

    def has_key_frame(self, schedule_id: int) -> bool:
        return self._slot(schedule_id).begin_frame

    def dispatch(self, fifo, now_ms=None) -> int:
        """Take one frame from ``fifo`` and send it to every playing session.

        Returns the number of sessions the frame went to; 0 if the fifo is empty.
        """
        frame = fifo.get()
        if frame is None:
            return 0
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        stamp = now_ms & 0xFFFFFFFF
        delivered = 0
        for slot in self._slots:
            if slot is None or slot.session.paused or slot.session.sender is None:
                continue
            if frame.frame_type == _FRAME_TYPE_I:
                slot.begin_frame = True
            slot.session.sender.send(frame.data, stamp)
            delivered += 1
        return delivered