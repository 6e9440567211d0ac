import socket
import struct

import pytest

from camstream.rtp import (
    FU_A_TYPE,
    G711_PAYLOAD_TYPE,
    H264_PAYLOAD_TYPE,
    MAX_RTP_PKT_LENGTH,
    RtpPayload,
    RtpSender,
    g711_packet,
    h264_packets,
    split_nal_units,
)

START = b"\x00\x00\x00\x01"


class FakeSocket:
    def __init__(self):
        self.sent = []
        self.options = []
        self.closed = False

    def sendto(self, data, address):
        self.sent.append((data, address))
        return len(data)

    def setsockopt(self, level, name, value):
        self.options.append((level, name, value))

    def close(self):
        self.closed = True


def unpack(packet):
    b0, b1, seq, ts, ssrc = struct.unpack(">BBHII", packet[:12])
    return {
        "version": b0 >> 6,
        "marker": b1 >> 7,
        "pt": b1 & 0x7F,
        "seq": seq,
        "ts": ts,
        "ssrc": ssrc,
        "payload": packet[12:],
    }


def test_small_nal_is_single_packet():
    nal = b"\x65" + bytes(range(50))
    packets = h264_packets(nal, 7, 1000, 1234)
    assert len(packets) == 1
    fields = unpack(packets[0])
    assert fields["version"] == 2
    assert fields["pt"] == H264_PAYLOAD_TYPE
    assert fields["marker"] == 1
    assert fields["seq"] == 7
    assert fields["ts"] == 90000
    assert fields["ssrc"] == 1234
    assert fields["payload"] == nal


def test_boundary_nal_is_not_fragmented():
    nal = b"\x41" + b"\xaa" * MAX_RTP_PKT_LENGTH
    packets = h264_packets(nal, 0, 0, 0)
    assert len(packets) == 1
    assert unpack(packets[0])["payload"] == nal


def test_large_nal_is_fragmented_as_fu_a():
    nal = b"\x65" + bytes(i % 251 for i in range(2 * MAX_RTP_PKT_LENGTH + 10))
    packets = h264_packets(nal, 100, 5, 9)
    assert len(packets) == 3
    fields = [unpack(p) for p in packets]
    assert [f["seq"] for f in fields] == [100, 101, 102]
    assert [f["marker"] for f in fields] == [0, 0, 1]
    for f in fields:
        indicator, fu_header = f["payload"][0], f["payload"][1]
        assert indicator & 0x1F == FU_A_TYPE
        assert indicator & 0xE0 == nal[0] & 0xE0
        assert fu_header & 0x1F == nal[0] & 0x1F
        assert len(f["payload"]) - 2 <= MAX_RTP_PKT_LENGTH
    assert [f["payload"][1] >> 7 for f in fields] == [1, 0, 0]
    assert [(f["payload"][1] >> 6) & 1 for f in fields] == [0, 0, 1]
    assert b"".join(f["payload"][2:] for f in fields) == nal[1:]


def test_sequence_wraps():
    nal = b"\x65" + b"\x01" * (MAX_RTP_PKT_LENGTH + 1)
    packets = h264_packets(nal, 0xFFFF, 0, 0)
    assert [unpack(p)["seq"] for p in packets] == [0xFFFF, 0]


def test_empty_nal_rejected():
    with pytest.raises(ValueError):
        h264_packets(b"", 0, 0, 0)


def test_g711_packet():
    data = b"\x55" * 160
    fields = unpack(g711_packet(data, 3, 777, 42))
    assert fields["pt"] == G711_PAYLOAD_TYPE
    assert fields["marker"] == 1
    assert fields["seq"] == 3
    assert fields["ts"] == 777
    assert fields["payload"] == data


def test_g711_packet_too_large():
    with pytest.raises(ValueError):
        g711_packet(b"\x00" * 2000, 0, 0, 0)


def test_split_nal_units():
    first = b"\x67" + bytes(range(1, 10))
    second = b"\x68" + bytes(range(1, 12))
    data = START + first + START + second
    units = split_nal_units(data)
    assert len(units) == 2
    assert units[0] == first
    assert second.startswith(units[1])
    assert units[1] == data[4 + len(first) + 4:len(data) - 5]


def test_split_without_start_code():
    assert split_nal_units(b"\x01\x02\x03\x04\x05\x06\x07\x08") == []


def test_sender_nalu_mode():
    fake = FakeSocket()
    sender = RtpSender("127.0.0.1", 5004, RtpPayload.H264_NALU, ssrc=11, sock=fake)
    count = sender.send(b"\x65" + b"\x02" * 20, 2)
    assert count == 1
    assert fake.sent[0][1] == ("127.0.0.1", 5004)
    assert unpack(fake.sent[0][0])["ssrc"] == 11
    sender.send(b"\x41" + b"\x03" * 20, 3)
    assert [unpack(p)["seq"] for p, _ in fake.sent] == [0, 1]
    assert sender.sequence == 2


def test_sender_h264_mode_splits_stream():
    fake = FakeSocket()
    sender = RtpSender("127.0.0.1", 5004, RtpPayload.H264, ssrc=1, sock=fake)
    first = b"\x67" + bytes(range(1, 10))
    second = b"\x68" + bytes(range(1, 12))
    count = sender.send(START + first + START + second, 0)
    assert count == 2
    assert unpack(fake.sent[0][0])["payload"] == first


def test_sender_g711_mode():
    fake = FakeSocket()
    sender = RtpSender("127.0.0.1", 6000, RtpPayload.G711, ssrc=1, sock=fake)
    sender.send(b"\x10" * 80, 320)
    fields = unpack(fake.sent[0][0])
    assert fields["pt"] == G711_PAYLOAD_TYPE
    assert fields["ts"] == 320


def test_sender_unsupported_payload():
    sender = RtpSender("127.0.0.1", 5004, RtpPayload.MJPEG, ssrc=1, sock=FakeSocket())
    with pytest.raises(ValueError):
        sender.send(b"\x00" * 10, 0)


def test_sender_broadcast_option():
    fake = FakeSocket()
    RtpSender("10.0.0.255", 5004, RtpPayload.H264_NALU, ssrc=1, sock=fake)
    assert fake.options == [(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)]
    unicast = FakeSocket()
    RtpSender("10.0.0.5", 5004, RtpPayload.H264_NALU, ssrc=1, sock=unicast)
    assert unicast.options == []


def test_sender_context_manager_closes():
    fake = FakeSocket()
    with RtpSender("127.0.0.1", 5004, RtpPayload.H264_NALU, ssrc=1, sock=fake) as sender:
        sender.send(b"\x65\x00", 0)
    assert fake.closed is True
    assert len(fake.sent) == 1