from __future__ import annotations

import pytest

from lrcp.message import Ack, Close, Connect, Data
from lrcp.session import CloseReason, Session

PEER = ("127.0.0.1", 40000)


@pytest.fixture
def session(clock):
    s = Session(12345, PEER, clock=clock)
    assert s.receive(Connect()) == [Ack(0)]
    return s


def test_connect_is_idempotent(session):
    session.receive(Data(0, b"abc"))
    assert session.receive(Connect()) == [Ack(3)]
    assert session.connected


def test_frame_before_connect_closes(clock):
    s = Session(1, PEER, clock=clock)
    assert s.receive(Data(0, b"hi\n")) == [Close()]
    assert not s.connected
    assert s.close_reason is CloseReason.NOT_CONNECTED


def test_hello_exchange(session):
    assert session.receive(Data(0, b"hello\n")) == [Ack(6), Data(0, b"olleh\n")]
    assert session.receive(Ack(6)) == []
    assert session.unacked == 0
    assert session.receive(Close()) == [Close()]
    assert session.close_reason is CloseReason.PEER


def test_line_split_across_frames_reversed_once(session):
    assert session.receive(Data(0, b"hel")) == [Ack(3)]
    assert session.receive(Data(3, b"lo\n")) == [Ack(6), Data(0, b"olleh\n")]
    assert session.queued == 6


def test_several_lines_in_one_frame(session):
    assert session.receive(Data(0, b"ab\ncd\ne")) == [Ack(7), Data(0, b"ba\ndc\n")]
    assert session.receive(Data(7, b"f\n")) == [Ack(9), Data(6, b"fe\n")]


def test_replayed_data_only_repeats_ack(session):
    session.receive(Data(0, b"hello\n"))
    assert session.receive(Data(0, b"hello\n")) == [Ack(6)]
    assert session.received == 6
    assert session.queued == 6


def test_gap_is_discarded(session):
    assert session.receive(Data(5, b"world\n")) == [Ack(0)]
    assert session.received == 0


def test_overlap_merges_only_new_suffix(session):
    session.receive(Data(0, b"abc"))
    assert session.receive(Data(1, b"bcdef\n")) == [Ack(7), Data(0, b"fedcba\n")]


def _deliver_until_stable(session, frames):
    # a sender keeps retransmitting until everything is acked
    for _ in range(len(frames)):
        for f in frames:
            session.receive(f)


@pytest.mark.parametrize(
    "frames",
    [
        [Data(0, b"abcd"), Data(2, b"cdefgh\n")],
        [Data(2, b"cdefgh\n"), Data(0, b"abcd")],
        [Data(0, b"abcd"), Data(4, b"efgh\n")],
        [Data(4, b"efgh\n"), Data(0, b"abcd")],
    ],
)
def test_delivery_order_does_not_change_stream(clock, frames):
    s = Session(9, PEER, clock=clock)
    s.receive(Connect())
    _deliver_until_stable(s, frames)
    assert s.received == 9
    assert s.receive(Ack(9)) == []
    assert s.acked == 9


def test_reversed_output_is_identical_for_either_order(clock):
    outputs = []
    for frames in ([Data(0, b"abcd"), Data(2, b"cdef\n")], [Data(2, b"cdef\n"), Data(0, b"abcd")]):
        s = Session(9, PEER, clock=clock)
        s.receive(Connect())
        produced = []
        for _ in range(2):
            for f in frames:
                produced += [p for p in s.receive(f) if isinstance(p, Data)]
        outputs.append(b"".join(p.data for p in produced))
    assert outputs[0] == outputs[1] == b"fedcba\n"


def test_ack_beyond_sent_closes(session):
    session.receive(Data(0, b"hi\n"))
    assert session.receive(Ack(4)) == [Close()]
    assert not session.connected
    assert session.close_reason is CloseReason.BAD_ACK


def test_ack_with_nothing_sent_beyond_zero_closes(session):
    assert session.receive(Ack(1)) == [Close()]


def test_long_line_is_chunked(session):
    line = b"x" * 900 + b"y\n"
    replies = session.receive(Data(0, line))
    assert replies[0] == Ack(902)
    chunks = replies[1:]
    assert [c.position for c in chunks] == [0, 400, 800]
    assert [len(c.data) for c in chunks] == [400, 400, 102]
    assert b"".join(c.data for c in chunks) == b"y" + b"x" * 900 + b"\n"


def test_partial_ack_resends_unacked_tail(session):
    session.receive(Data(0, b"x" * 900 + b"y\n"))
    replies = session.receive(Ack(400))
    assert [c.position for c in replies] == [400, 800]
    assert session.acked == 400
    assert session.retransmits == 2


def test_stale_ack_does_not_move_cursor_back(session):
    session.receive(Data(0, b"hello\n"))
    session.receive(Ack(6))
    assert session.receive(Ack(2)) == []
    assert session.acked == 6


def test_ping_retransmits_after_three_seconds(session, clock):
    first = session.receive(Data(0, b"hello\n"))[1]
    clock.advance(2.9)
    assert session.ping() == []
    clock.advance(0.2)
    assert session.ping() == [first]
    assert session.retransmits == 1
    clock.advance(1.0)
    assert session.ping() == []


def test_ping_idle_when_everything_acked(session, clock):
    session.receive(Data(0, b"hello\n"))
    session.receive(Ack(6))
    clock.advance(10)
    assert session.ping() == []


def test_ping_times_out_after_sixty_seconds(session, clock):
    clock.advance(60)
    assert session.ping() == []
    clock.advance(0.5)
    assert session.ping() == [Close()]
    assert session.close_reason is CloseReason.TIMEOUT


def test_any_frame_resets_idle_timer(session, clock):
    clock.advance(50)
    session.receive(Ack(0))
    clock.advance(50)
    assert session.ping() == []
