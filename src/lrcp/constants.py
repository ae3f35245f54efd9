from __future__ import annotations

MAX_DATA_CHUNK = 400  # payload bytes per data frame, keeps datagrams < 1000 bytes
MIN_FRAME_LEN = 9  # "/close/0/" and "/ack/0/0/" are the shortest legal frames
MAX_NUMBER = 2**31 - 1  # largest session, position or length on the wire
MAX_NUMBER_DIGITS = len(str(MAX_NUMBER))

RETRANSMIT_AFTER_S = 3.0
SESSION_EXPIRY_S = 60.0
TICK_INTERVAL_S = 1.0

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 9999
DEFAULT_TIMEOUT_MS = 500
DEFAULT_MAX_RETRIES = 20
RECV_BUFSIZE = 65535
