"""Line Reversal Control Protocol (LRCP)

A reliable, ordered byte stream carried over UDP datagrams, with a
line-reversal application on top:
- ``message``: the slash-delimited wire codec
- ``session``: per-session ARQ (cumulative acks, retransmission, expiry)
- ``registry``: routes frames to sessions and drives their timers
- ``server``: the single-threaded UDP serve loop
"""

from .message import Ack, Close, Connect, Data, FrameError, Message, decode, encode
from .registry import Registry
from .server import Server, ServerConfig
from .session import CloseReason, Session

__all__ = [
    "Ack",
    "Close",
    "CloseReason",
    "Connect",
    "Data",
    "FrameError",
    "Message",
    "Registry",
    "Server",
    "ServerConfig",
    "Session",
    "decode",
    "encode",
]
