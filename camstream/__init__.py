"""Frame queue, RTP packetisation, scheduling, SDP and RTSP reply helpers for H.264 streaming."""

__version__ = "0.1.0"