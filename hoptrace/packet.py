"""Probe packets on the wire: building UDP probes and reading ICMP replies."""

from __future__ import annotations

import enum
import ipaddress
import struct
from dataclasses import dataclass
from typing import Optional

IP_HEADER_LEN = 20
UDP_HEADER_LEN = 8
ICMP_HEADER_LEN = 8
PROBE_LEN = IP_HEADER_LEN + UDP_HEADER_LEN
REPLY_BUFFER_SIZE = 1024

IP_VERSION = 4
IPPROTO_UDP = 17
IP_DONT_FRAGMENT = 0x4000

ICMP_DEST_UNREACH = 3
ICMP_PORT_UNREACH = 3
ICMP_TIME_EXCEEDED = 11

_IP_STRUCT = struct.Struct("!BBHHHBBHII")
_UDP_STRUCT = struct.Struct("!HHHH")
_ICMP_STRUCT = struct.Struct("!BBH")


class ReplyKind(enum.IntEnum):
    """What a received reply means for the probe being waited on."""

    NONE = 0
    TIME_EXCEEDED = 1
    REACHED = 2


@dataclass(frozen=True)
class Reply:
    """The fields of an ICMP reply that the trace needs."""

    src_ip: int
    icmp_type: int
    icmp_code: int
    orig_port: Optional[int]


def _checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def build_probe(src_ip: int, dst_ip: int, ttl: int, tos: int, ident: int, port: int) -> bytes:
    """An IPv4 header followed by an empty UDP datagram to and from ``port``."""
    header = _IP_STRUCT.pack(
        (IP_VERSION << 4) | (IP_HEADER_LEN // 4),
        tos & 0xFF,
        PROBE_LEN,
        ident & 0xFFFF,
        IP_DONT_FRAGMENT,
        ttl & 0xFF,
        IPPROTO_UDP,
        0,
        src_ip & 0xFFFFFFFF,
        dst_ip & 0xFFFFFFFF,
    )
    checksum = _checksum(header)
    header = header[:10] + struct.pack("!H", checksum) + header[12:]
    udp = _UDP_STRUCT.pack(port & 0xFFFF, port & 0xFFFF, UDP_HEADER_LEN, 0)
    return header + udp


def _ip_header_len(data: bytes) -> int:
    length = (data[0] & 0x0F) * 4
    if length < IP_HEADER_LEN or len(data) < length:
        raise ValueError("truncated or malformed IP header")
    return length


def parse_reply(data: bytes) -> Reply:
    """Read the sender, ICMP type and code, and the quoted probe's source port."""
    if len(data) < IP_HEADER_LEN:
        raise ValueError("reply shorter than an IP header")
    ihl = _ip_header_len(data)
    src_ip = struct.unpack_from("!I", data, 12)[0]
    icmp = data[ihl:]
    if len(icmp) < ICMP_HEADER_LEN:
        raise ValueError("reply shorter than an ICMP header")
    icmp_type, icmp_code, _ = _ICMP_STRUCT.unpack_from(icmp)
    inner = icmp[ICMP_HEADER_LEN:]
    orig_port: Optional[int] = None
    if len(inner) >= IP_HEADER_LEN:
        inner_ihl = (inner[0] & 0x0F) * 4
        if inner_ihl >= IP_HEADER_LEN and len(inner) >= inner_ihl + 2:
            orig_port = struct.unpack_from("!H", inner, inner_ihl)[0]
    return Reply(src_ip, icmp_type, icmp_code, orig_port)


def classify(reply: Reply, expected_port: int) -> ReplyKind:
    """Decide whether ``reply`` answers the probe sent from ``expected_port``."""
    if reply.icmp_type == ICMP_TIME_EXCEEDED and reply.orig_port == expected_port:
        return ReplyKind.TIME_EXCEEDED
    if reply.icmp_type == ICMP_DEST_UNREACH and reply.icmp_code == ICMP_PORT_UNREACH:
        return ReplyKind.REACHED
    return ReplyKind.NONE


def format_packet(data: bytes) -> str:
    """A readable dump of an IPv4 header and the UDP header after it."""
    if len(data) < IP_HEADER_LEN:
        raise ValueError("packet shorter than an IP header")
    ihl = _ip_header_len(data)
    (ver_ihl, tos, total_len, ident, frag, ttl, proto, checksum, src, dst) = (
        _IP_STRUCT.unpack_from(data)
    )
    lines = [
        "-" * 48,
        "IP",
        f"  version={ver_ihl >> 4} ihl={ver_ihl & 0x0F} tos={tos} total_len={total_len}",
        f"  id={ident} flags=0x{frag >> 13:x} frag_off={frag & 0x1FFF}",
        f"  ttl={ttl} protocol={proto} checksum=0x{checksum:04x}",
        f"  src={ipaddress.IPv4Address(src)} dst={ipaddress.IPv4Address(dst)}",
    ]
    udp = data[ihl:]
    if len(udp) >= UDP_HEADER_LEN:
        src_port, dst_port, length, udp_sum = _UDP_STRUCT.unpack_from(udp)
        lines += [
            "UDP",
            f"  src_port={src_port} dst_port={dst_port} length={length} "
            f"checksum=0x{udp_sum:04x}",
        ]
    return "\n".join(lines) + "\n"