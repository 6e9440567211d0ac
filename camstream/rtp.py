"""RTP packetisation of H.264 NAL units and G.711 audio, and a UDP sender."""

from __future__ import annotations

import ipaddress
import socket
import struct
from enum import IntEnum

MAX_RTP_PKT_LENGTH = 1400
H264_PAYLOAD_TYPE = 96
G711_PAYLOAD_TYPE = 97
RTP_VERSION = 2
FU_A_TYPE = 28
H264_CLOCK_PER_MS = 90000 // 1000

_SEND_BUFFER_SIZE = MAX_RTP_PKT_LENGTH + 100
_HEADER_SIZE = 12
_START_CODE = b"\x00\x00\x00\x01"


class RtpPayload(IntEnum):
    """What a sender is given to transmit."""

    H264 = 0x100
    H264_NALU = 0x101
    MJPEG = 0x102
    G711 = 0x200


def _header(payload_type: int, marker: bool, sequence: int, timestamp: int, ssrc: int) -> bytes:
    return struct.pack(
        ">BBHII",
        RTP_VERSION << 6,
        (0x80 if marker else 0) | (payload_type & 0x7F),
        sequence & 0xFFFF,
        timestamp & 0xFFFFFFFF,
        ssrc & 0xFFFFFFFF,
    )


def split_nal_units(data: bytes) -> list[bytes]:
    """Split an Annex B byte stream on 00 00 00 01 start codes.

    The scan stops five bytes before the end of the data, so the final unit
    ends where the scan stopped. Data without a start code yields no units.
    """
    end = len(data) - 5
    pos = 0
    start = None
    while pos < end:
        if data[pos:pos + 4] == _START_CODE:
            pos += 4
            start = pos
            break
        pos += 1
    if start is None:
        return []

    units = []
    while pos < end:
        if data[pos:pos + 4] == _START_CODE:
            units.append(bytes(data[start:pos]))
            pos += 4
            start = pos
        pos += 1
    if pos > start:
        units.append(bytes(data[start:pos]))
    return units


def h264_packets(nal: bytes, sequence: int, timestamp: int, ssrc: int) -> list[bytes]:
    """Packetise one NAL unit; ``timestamp`` is in milliseconds.

    Units whose body fits in one packet are sent whole; larger ones are cut
    into FU-A fragments. Packet ``i`` carries sequence number ``sequence + i``.
    """
    if not nal:
        raise ValueError("empty NAL unit")
    rtp_time = timestamp * H264_CLOCK_PER_MS
    first = nal[0]
    body = nal[1:]

    if len(body) <= MAX_RTP_PKT_LENGTH:
        return [_header(H264_PAYLOAD_TYPE, True, sequence, rtp_time, ssrc) + bytes(nal)]

    indicator = (first & 0xE0) | FU_A_TYPE
    nal_type = first & 0x1F
    packets = []
    for index, offset in enumerate(range(0, len(body), MAX_RTP_PKT_LENGTH)):
        chunk = body[offset:offset + MAX_RTP_PKT_LENGTH]
        last = len(body) - offset <= MAX_RTP_PKT_LENGTH
        fu_header = (0x80 if offset == 0 else 0) | (0x40 if last else 0) | nal_type
        header = _header(H264_PAYLOAD_TYPE, last, sequence + index, rtp_time, ssrc)
        packets.append(header + bytes((indicator, fu_header)) + bytes(chunk))
    return packets


def g711_packet(data: bytes, sequence: int, timestamp: int, ssrc: int) -> bytes:
    """Wrap a block of G.711 samples in a single RTP packet."""
    if len(data) > _SEND_BUFFER_SIZE - _HEADER_SIZE:
        raise ValueError(f"G.711 block of {len(data)} bytes does not fit in one packet")
    return _header(G711_PAYLOAD_TYPE, True, sequence, timestamp, ssrc) + bytes(data)


def _is_broadcast(address: str) -> bool:
    try:
        return ipaddress.IPv4Address(address).packed[3] == 0xFF
    except ValueError:
        return False


def _local_ssrc(address: str, port: int) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        if _is_broadcast(address):
            probe.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        probe.connect((address, port))
        local = probe.getsockname()[0]
    return int(ipaddress.IPv4Address(local))


class RtpSender:
    """Sends media to one UDP destination as RTP packets."""

    def __init__(self, address, port, payload, ssrc=None, sock=None):
        self.address = address
        self.port = port
        self.payload = RtpPayload(payload)
        self.sequence = 0
        own_socket = sock is None
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM) if own_socket else sock
        try:
            if _is_broadcast(address):
                self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            self.ssrc = _local_ssrc(address, port) if ssrc is None else ssrc
        except OSError:
            if own_socket:
                self._sock.close()
            raise

    def _transmit(self, packets: list[bytes]) -> int:
        for packet in packets:
            self._sock.sendto(packet, (self.address, self.port))
        self.sequence = (self.sequence + len(packets)) & 0xFFFF
        return len(packets)

    def _send_nal(self, nal: bytes, timestamp: int) -> int:
        return self._transmit(h264_packets(nal, self.sequence, timestamp, self.ssrc))

    def send(self, data, timestamp):
        """Send ``data`` stamped with ``timestamp``; returns the packet count."""
        if self.payload is RtpPayload.H264:
            return sum(self._send_nal(nal, timestamp) for nal in split_nal_units(data))
        if self.payload is RtpPayload.H264_NALU:
            return self._send_nal(data, timestamp)
        if self.payload is RtpPayload.G711:
            return self._transmit([g711_packet(data, self.sequence, timestamp, self.ssrc)])
        raise ValueError(f"cannot send payload {self.payload.name}")

    def close(self):
        self._sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()