import ipaddress
import struct

import pytest

from hoptrace import packet
from hoptrace.packet import Reply, ReplyKind

SRC = int(ipaddress.IPv4Address("10.0.0.1"))
DST = int(ipaddress.IPv4Address("192.0.2.7"))
ROUTER = int(ipaddress.IPv4Address("198.51.100.9"))


def _ones_sum(data):
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return total


def _icmp_reply(icmp_type, icmp_code, inner, sender=ROUTER):
    outer = struct.pack("!BBHHHBBHII", 0x45, 0, 0, 0, 0, 64, 1, 0, sender, SRC)
    icmp = struct.pack("!BBHI", icmp_type, icmp_code, 0, 0)
    return outer + icmp + inner


def test_probe_length():
    data = packet.build_probe(SRC, DST, 1, 0, 420, 33434)
    assert len(data) == packet.PROBE_LEN


def test_probe_header_fields():
    data = packet.build_probe(SRC, DST, 7, 16, 420, 33440)
    fields = struct.unpack("!BBHHHBBHII", data[:20])
    assert fields[0] >> 4 == packet.IP_VERSION
    assert fields[1] == 16
    assert fields[2] == packet.PROBE_LEN
    assert fields[3] == 420
    assert fields[4] == packet.IP_DONT_FRAGMENT
    assert fields[5] == 7
    assert fields[6] == packet.IPPROTO_UDP
    assert fields[8] == SRC
    assert fields[9] == DST


def test_probe_udp_ports_and_length():
    data = packet.build_probe(SRC, DST, 3, 0, 1, 40000)
    src_port, dst_port, length, _ = struct.unpack("!HHHH", data[20:28])
    assert src_port == 40000
    assert dst_port == 40000
    assert length == packet.UDP_HEADER_LEN


def test_probe_checksum_is_valid():
    data = packet.build_probe(SRC, DST, 12, 8, 999, 33500)
    assert _ones_sum(data[:20]) == 0xFFFF


def test_parse_time_exceeded_round_trip():
    probe = packet.build_probe(SRC, DST, 2, 0, 420, 33436)
    reply = packet.parse_reply(_icmp_reply(packet.ICMP_TIME_EXCEEDED, 0, probe))
    assert reply == Reply(ROUTER, packet.ICMP_TIME_EXCEEDED, 0, 33436)


def test_classify_time_exceeded_matching_port():
    probe = packet.build_probe(SRC, DST, 2, 0, 420, 33436)
    reply = packet.parse_reply(_icmp_reply(packet.ICMP_TIME_EXCEEDED, 0, probe))
    assert packet.classify(reply, 33436) is ReplyKind.TIME_EXCEEDED


def test_classify_time_exceeded_other_port_is_ignored():
    probe = packet.build_probe(SRC, DST, 2, 0, 420, 33436)
    reply = packet.parse_reply(_icmp_reply(packet.ICMP_TIME_EXCEEDED, 0, probe))
    assert packet.classify(reply, 33437) is ReplyKind.NONE


def test_classify_port_unreachable_means_reached():
    probe = packet.build_probe(SRC, DST, 9, 0, 420, 33450)
    reply = packet.parse_reply(
        _icmp_reply(packet.ICMP_DEST_UNREACH, packet.ICMP_PORT_UNREACH, probe, DST)
    )
    assert reply.src_ip == DST
    assert packet.classify(reply, 33450) is ReplyKind.REACHED


def test_classify_other_unreachable_code_is_ignored():
    probe = packet.build_probe(SRC, DST, 9, 0, 420, 33450)
    reply = packet.parse_reply(_icmp_reply(packet.ICMP_DEST_UNREACH, 1, probe))
    assert packet.classify(reply, 33450) is ReplyKind.NONE


def test_parse_reply_without_quoted_probe():
    reply = packet.parse_reply(_icmp_reply(packet.ICMP_TIME_EXCEEDED, 0, b""))
    assert reply.orig_port is None
    assert packet.classify(reply, 33434) is ReplyKind.NONE


@pytest.mark.parametrize("data", [b"", b"\x45" * 10, b"\x45" + b"\x00" * 21])
def test_parse_reply_rejects_short_data(data):
    with pytest.raises(ValueError):
        packet.parse_reply(data)


def test_format_packet_shows_fields():
    data = packet.build_probe(SRC, DST, 5, 0, 420, 33434)
    text = packet.format_packet(data)
    assert "ttl=5" in text
    assert "id=420" in text
    assert "src=10.0.0.1" in text
    assert "dst=192.0.2.7" in text
    assert "src_port=33434" in text


def test_format_packet_rejects_short_data():
    with pytest.raises(ValueError):
        packet.format_packet(b"\x45\x00")