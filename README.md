# camstream

camstream provides the parts needed to stream live H.264 video to RTSP clients
over RTP. It has an in-memory queue for encoded frames, RTP packetisation with
FU-A fragmentation for large NAL units, a UDP sender, a scheduler that sends
each queued frame to every playing session, and helpers that write SDP
descriptions and RTSP reply text.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `camstream.ringfifo`
  - `RingFifo(capacity=32)` is a bounded queue of `Frame` objects. A `Frame`
    has `data`, `frame_type` (a `FrameType`: `I`, `P` or `B`) and `size`.
  - `put(data, frame_type)` returns `False` and drops the frame when the queue
    is full.
  - `get()` returns the oldest frame, or `None` when the queue is empty.
  - `reset()` empties the queue.
  - `put_stream(packs, on_sps, on_pps)` joins the packs of one encoded picture
    into a single frame. Each pack starts with a four-byte start code. A pack
    holding an SPS (NAL header `0x67`) makes the frame an `I` frame, and the
    first 9 bytes of that NAL unit are passed to `on_sps`. For a PPS (`0x68`),
    the first 4 bytes are passed to `on_pps`.
- `camstream.rtp`
  - `split_nal_units(data)` cuts an Annex B stream on `00 00 00 01` start codes.
  - `h264_packets(nal, sequence, timestamp, ssrc)` turns one NAL unit into RTP
    packets. It uses payload type 96 and a 90 kHz clock, and the timestamp is
    given in milliseconds. A unit whose body is longer than 1400 bytes is sent
    as FU-A fragments.
  - `g711_packet(data, sequence, timestamp, ssrc)` wraps G.711 samples in one
    RTP packet with payload type 97.
  - `RtpSender(address, port, payload, ssrc=None, sock=None)` sends to one UDP
    destination. `payload` is an `RtpPayload`: `H264` for a whole stream that
    is split on start codes, `H264_NALU` for one NAL unit, or `G711`. `send(data,
    timestamp)` returns the number of packets sent and raises `ValueError` for
    `MJPEG`. The sender is a context manager. When no `ssrc` is given, it is
    taken from the local IPv4 address used to reach the destination.
- `camstream.sdp`
  - `ParameterSets` holds the Base64 `sps`, `pps` and hex `profile_id`.
    `update_sps` and `update_pps` ignore units longer than 21 bytes.
  - `build_sdp(...)` writes the SDP for a single H.264 video track.
  - `describe_reply`, `options_reply`, `setup_reply`, `play_reply` and
    `teardown_reply` write the text of the matching RTSP 200 replies.
  - Also in this module: `date_header`, `sdp_session_id` and `base64_encode`.
- `camstream.rtsp_utils`
  - `ClientBuffer` holds one client's input, output and CSeq. `write` raises
    `OutputOverflowError` when the output buffer is full. `send_reply(code)`
    queues a bare status reply, and `take_output()` returns the queued bytes and
    clears them.
  - `Scheduler` keeps a fixed table of `RtpSession` objects. Use `add`, `start`
    and `remove` to manage sessions. `dispatch(fifo, now_ms)` takes one frame and
    sends it to every started session that has a sender.
  - Also in this module: `status_text`, `format_address`, `tcp_listen`,
    `tcp_write` and `TransportType`.

## Example

```python
from camstream.ringfifo import RingFifo
from camstream.rtp import RtpPayload, RtpSender
from camstream.rtsp_utils import RtpSession, Scheduler
from camstream.sdp import ParameterSets

fifo = RingFifo(32)
params = ParameterSets()

sps = b"\x00\x00\x00\x01\x67\x64\x00\x29\xac\x2c\xa8\x07\x80"
idr = b"\x00\x00\x00\x01\x65\x88\x84\x00\x33"
fifo.put_stream([sps, idr], on_sps=params.update_sps, on_pps=params.update_pps)

scheduler = Scheduler(10)
with RtpSender("127.0.0.1", 5004, RtpPayload.H264_NALU, ssrc=1234) as sender:
    session = RtpSession(sender=sender)
    scheduler.start(scheduler.add(session))
    scheduler.dispatch(fifo)   # sends the queued frame; returns 1
```

## What is not included

camstream has no RTSP server of its own. It does not accept TCP connections. It
does not parse incoming RTSP requests: there is no code that finds the method,
the CSeq or the Session header. It also has no per-session state machine to move
clients through SETUP, PLAY and TEARDOWN, and it installs no command-line program.
To stream to real clients you have to supply the accept loop and the request
handling yourself. The `ClientBuffer`, `Scheduler`, SDP and reply helpers above
are the pieces that code would use.