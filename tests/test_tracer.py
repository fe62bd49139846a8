import io
import os
import signal
import socket
import struct
import time

import pytest

from hoptrace.options import Options
from hoptrace.packet import ReplyKind, build_probe
from hoptrace.table import Probe, Table
from hoptrace.tracer import SocketSetupError, Tracer, open_socket, timestamp_us

TARGET = 0x08080808
HOP = 0x0A000001


class FakeSend:
    def __init__(self):
        self.sent = []

    def sendto(self, data, addr):
        self.sent.append((data, addr))
        return len(data)


class FakeRecv:
    def __init__(self, replies=()):
        self.replies = list(replies)

    def recv(self, size):
        if not self.replies:
            raise socket.timeout("timed out")
        return self.replies.pop(0)


def make_reply(src, icmp_type, code, port):
    inner = build_probe(0xC0A80001, TARGET, 1, 0, 420, port)
    icmp = struct.pack("!BBHI", icmp_type, code, 0, 0) + inner
    outer = struct.pack(
        "!BBHHHBBHII", 0x45, 0, 20 + len(icmp), 0, 0, 64, 1, 0, src, 0xC0A80001
    )
    return outer + icmp


def counter_clock(start=1000, step=250):
    state = {"now": start - step}

    def clock():
        state["now"] += step
        return state["now"]

    return clock


def make_tracer(replies=(), **kwargs):
    options = Options(target="8.8.8.8", target_ip=TARGET, **kwargs)
    send = FakeSend()
    recv = FakeRecv(replies)
    tracer = Tracer(options, send, recv, Table(), clock=counter_clock())
    return tracer, send, recv


def test_timestamp_us_tracks_wall_clock():
    before = time.time() * 1_000_000
    value = timestamp_us()
    after = time.time() * 1_000_000
    assert before - 1 <= value <= after + 1


def test_probes_allocated_for_every_hop_and_probe():
    tracer, _, _ = make_tracer(max_hop=4, nb_prob=2)
    assert len(tracer.probes) == 8
    assert all(p == Probe() for p in tracer.probes)


def test_receive_time_exceeded_records_probe():
    base = 33434
    tracer, _, _ = make_tracer([make_reply(HOP, 11, 0, base + 1)])
    tracer.last_sent = 500
    kind = tracer.receive(1)
    assert kind is ReplyKind.TIME_EXCEEDED
    assert tracer.probes[1].ip == HOP
    assert tracer.probes[1].ts > 0


def test_receive_skips_replies_for_other_ports():
    base = 33434
    tracer, _, recv = make_tracer(
        [make_reply(HOP, 11, 0, base + 7), make_reply(HOP, 11, 0, base)]
    )
    assert tracer.receive(0) is ReplyKind.TIME_EXCEEDED
    assert tracer.probes[7] == Probe()
    assert tracer.probes[0].ip == HOP
    assert recv.replies == []


def test_receive_port_unreachable_is_reached():
    tracer, _, _ = make_tracer([make_reply(TARGET, 3, 3, 33434)])
    assert tracer.receive(0) is ReplyKind.REACHED
    assert tracer.probes[0].ip == TARGET


def test_receive_timeout_returns_none():
    tracer, _, _ = make_tracer()
    assert tracer.receive(0) is ReplyKind.NONE
    assert tracer.probes[0] == Probe()


def test_receive_ignores_garbage():
    tracer, _, _ = make_tracer([b"\x45\x00", make_reply(HOP, 11, 0, 33434)])
    assert tracer.receive(0) is ReplyKind.TIME_EXCEEDED


def test_interrupt_only_reacts_to_sigint():
    tracer, _, _ = make_tracer()
    tracer.interrupt(signal.SIGTERM, None)
    assert tracer.interrupted is False
    tracer.interrupt(signal.SIGINT, None)
    assert tracer.interrupted is True


def test_interrupted_tracer_sends_nothing():
    tracer, send, _ = make_tracer()
    tracer.interrupt(signal.SIGINT, None)
    out = io.StringIO()
    assert tracer.run(out) is False
    assert send.sent == []
    assert out.getvalue() == tracer.table.header()


def test_send_probe_targets_destination_and_stamps_time():
    tracer, send, _ = make_tracer()
    packet = build_probe(0, TARGET, 1, 0, 420, 33434)
    tracer.send_probe(packet)
    assert send.sent == [(packet, ("8.8.8.8", 0))]
    assert tracer.last_sent == 1000


def test_run_increments_ttl_per_hop_and_port_per_probe():
    tracer, send, _ = make_tracer(max_hop=3, nb_prob=2)
    out = io.StringIO()
    assert tracer.run(out) is False
    ttls = [data[8] for data, _ in send.sent]
    ports = [struct.unpack_from("!H", data, 20)[0] for data, _ in send.sent]
    assert ttls == [1, 1, 2, 2, 3, 3]
    assert ports == [33434 + i for i in range(6)]
    assert out.getvalue().count(tracer.table.footer()) == 3


def test_run_honours_start_hop():
    tracer, send, _ = make_tracer(max_hop=3, nb_prob=1, start_hop=2)
    tracer.run(io.StringIO())
    assert [data[8] for data, _ in send.sent] == [2, 3, 4]


def test_run_stops_when_destination_reached():
    replies = [make_reply(HOP, 11, 0, 33434), make_reply(TARGET, 3, 3, 33435)]
    tracer, send, _ = make_tracer(replies, max_hop=5, nb_prob=1)
    out = io.StringIO()
    assert tracer.run(out) is True
    assert len(send.sent) == 2
    text = out.getvalue()
    assert "10.0.0.1" in text
    assert "8.8.8.8" in text
    assert text.count(tracer.table.footer()) == 2


def test_open_socket_requires_root(monkeypatch):
    monkeypatch.setattr(os, "getuid", lambda: 1000, raising=False)
    with pytest.raises(SocketSetupError, match="Lacking privilege"):
        open_socket(None, 0.5)