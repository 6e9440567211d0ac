"""SDP session descriptions and the text of RTSP replies."""

from __future__ import annotations

import base64
import struct
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from camstream.rtsp_utils import (
    RTSP_EOL,
    RTSP_VERSION,
    SERVER_NAME,
    SERVER_VERSION,
    RtpSession,
    TransportType,
    status_text,
)

NTP_EPOCH_OFFSET = 2208988800
MAX_PARAMETER_SET_LENGTH = 21
H264_PAYLOAD_TYPE = 96

# Fixed addresses written into unicast Transport replies.
UNICAST_DESTINATION = "192.168.245.65"
UNICAST_SOURCE = "192.168.245.96"

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def _float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def base64_encode(data) -> str:
    """Standard base64 text of ``data`` with padding."""
    return base64.b64encode(bytes(data)).decode("ascii")


@dataclass
class ParameterSets:
    """Base64 forms of the latest SPS and PPS, as announced in SDP."""

    profile_id: str = ""
    sps: str = ""
    pps: str = ""

    def update_sps(self, data) -> bool:
        """Record an SPS NAL unit; units longer than 21 bytes are ignored.

        Returns True if the stored values changed hands.
        """
        data = bytes(data)
        if len(data) > MAX_PARAMETER_SET_LENGTH:
            return False
        if len(data) < 4:
            raise ValueError("SPS unit needs at least 4 bytes")
        self.profile_id = f"{data[1]:x}{data[2]:x}{data[3]:x}"
        self.sps = base64_encode(data)
        return True

    def update_pps(self, data) -> bool:
        """Record a PPS NAL unit; units longer than 21 bytes are ignored."""
        data = bytes(data)
        if len(data) > MAX_PARAMETER_SET_LENGTH:
            return False
        self.pps = base64_encode(data)
        return True


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def sdp_session_id(now=None) -> str:
    """Session id for SDP: the time in NTP seconds, in single precision."""
    seconds = int(_now(now))
    value = _float32(_float32(float(seconds)) + _float32(float(NTP_EPOCH_OFFSET)))
    return f"{value:.0f}"


def build_sdp(session_id, host_address, client_address, rtp_port, parameter_sets) -> str:
    """SDP description of the single H.264 video track."""
    sets = parameter_sets
    lines = [
        "v=0",
        f"o=-{session_id} {session_id} IN IP4 {host_address}",
        "s=Unnamed",
        "i=N/A",
        f"c=IN IP4 {client_address}",
        "t=0 0",
        "a=recvonly",
        f"m=video {rtp_port} RTP/AVP {H264_PAYLOAD_TYPE}",
        "b=RR:0",
        f"a=rtpmap:{H264_PAYLOAD_TYPE} H264/90000",
        f"a=fmtp:{H264_PAYLOAD_TYPE} packetization-mode=1;"
        f"profile-level-id={sets.profile_id};"
        f"sprop-parameter-sets={sets.sps},{sets.pps};",
        "a=control:trackID=0",
    ]
    return "".join(line + RTSP_EOL for line in lines)


def date_header(now=None) -> str:
    """``Date:`` header line in GMT, ending with CRLF."""
    moment = datetime.fromtimestamp(int(_now(now)), timezone.utc)
    return (
        f"Date: {_DAYS[moment.weekday()]}, {moment.day:02d} "
        f"{_MONTHS[moment.month - 1]} {moment.year:04d} "
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d} GMT{RTSP_EOL}"
    )


def _status_line(cseq: int) -> str:
    return f"{RTSP_VERSION} 200 {status_text(200)}{RTSP_EOL}CSeq: {cseq}{RTSP_EOL}"


def _server_head(cseq: int, now) -> str:
    return (
        _status_line(cseq)
        + f"Server: {SERVER_NAME}/{SERVER_VERSION}{RTSP_EOL}"
        + date_header(now)
    )


def describe_reply(cseq, host_address, url_object, sdp, now=None) -> str:
    """Reply to DESCRIBE carrying ``sdp`` as its body."""
    return (
        _server_head(cseq, now)
        + f"Content-Type: application/sdp{RTSP_EOL}"
        + f"Content-Base: rtsp://{host_address}/{url_object}/{RTSP_EOL}"
        + f"Content-Length: {len(sdp)}{RTSP_EOL}"
        + RTSP_EOL
        + sdp
    )


def options_reply(cseq) -> str:
    """Reply to OPTIONS listing the supported methods."""
    return (
        _status_line(cseq)
        + f"Public: OPTIONS,DESCRIBE,SETUP,PLAY,PAUSE,TEARDOWN{RTSP_EOL}"
        + RTSP_EOL
    )


def _transport_text(transport: RtpSession) -> str:
    if transport.transport is TransportType.RTP_AVP:
        text = ""
        if not transport.is_multicast:
            rtp, rtcp = transport.client_ports
            text += (
                f"RTP/AVP;unicast;client_port={rtp}-{rtcp};"
                f"destination={UNICAST_DESTINATION};"
                f"source={UNICAST_SOURCE};server_port="
            )
        rtp, rtcp = transport.server_ports
        return text + f"{rtp}-{rtcp}{RTSP_EOL}"
    if transport.transport is TransportType.RTP_AVP_TCP:
        rtp, rtcp = transport.interleaved
        return f"RTP/AVP/TCP;interleaved={rtp}-{rtcp}{RTSP_EOL}"
    return ""


def setup_reply(cseq, session_id, transport, now=None) -> str:
    """Reply to SETUP describing the negotiated transport of ``transport``."""
    return (
        _server_head(cseq, now)
        + f"Session: {session_id}{RTSP_EOL}Transport: "
        + _transport_text(transport)
        + RTSP_EOL
    )


def play_reply(cseq, session_id, now=None) -> str:
    """Reply to PLAY."""
    return _server_head(cseq, now) + f"Session: {session_id}{RTSP_EOL}" + RTSP_EOL


def teardown_reply(cseq, session_id, now=None) -> str:
    """Reply to TEARDOWN."""
    return _server_head(cseq, now) + f"Session: {session_id}{RTSP_EOL}" + RTSP_EOL