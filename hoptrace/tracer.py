"""Sending UDP probes with growing TTL and collecting the ICMP answers."""

from __future__ import annotations

import ipaddress
import os
import signal
import socket
import sys
import time
from typing import Callable, List, Optional, TextIO

from .options import PROG_NAME, Options
from .packet import REPLY_BUFFER_SIZE, ReplyKind, build_probe, classify, parse_reply
from .table import Probe, Table

TIMEOUT = 0.5
SO_BINDTODEVICE = getattr(socket, "SO_BINDTODEVICE", 25)


class SocketSetupError(Exception):
    """Raised when a raw socket cannot be opened or configured."""

    status = 4


def timestamp_us() -> int:
    """Wall-clock time in microseconds."""
    return time.time_ns() // 1000


def open_socket(interface: Optional[str], timeout: float) -> socket.socket:
    """A raw ICMP socket with a receive timeout and IP_HDRINCL set.

    When ``interface`` is given the socket is bound to that device.
    """
    getuid = getattr(os, "getuid", None)
    if getuid is None or getuid() != 0:
        raise SocketSetupError(f"{PROG_NAME}: Lacking privilege for icmp packet")
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP)
    except OSError as exc:
        raise SocketSetupError("get_sock_echo: failed to get raw socket") from exc
    try:
        try:
            sock.settimeout(timeout)
        except OSError as exc:
            raise SocketSetupError("get_sock_echo: failed to set timeout on recv") from exc
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_HDRINCL, 1)
        except OSError as exc:
            raise SocketSetupError("get_sock_echo: failed to set IP_HDRINCL") from exc
        if interface:
            try:
                sock.setsockopt(
                    socket.SOL_SOCKET, SO_BINDTODEVICE, interface.encode() + b"\x00"
                )
            except OSError as exc:
                raise SocketSetupError("get_sock_echo: failed to bind interface") from exc
    except SocketSetupError:
        sock.close()
        raise
    return sock


class Tracer:
    """Runs one trace towards ``options.target_ip`` and prints the table."""

    def __init__(
        self,
        options: Options,
        send_sock,
        recv_sock,
        table: Optional[Table] = None,
        clock: Callable[[], int] = timestamp_us,
    ) -> None:
        self.options = options
        self.send_sock = send_sock
        self.recv_sock = recv_sock
        self.table = table if table is not None else Table(resolve_ip=options.resolve_ip)
        self.clock = clock
        self.probes: List[Probe] = [
            Probe() for _ in range(options.max_hop * options.nb_prob)
        ]
        self.interrupted = False
        self.current_ttl = (options.start_hop - 1) & 0xFF
        self.current_hop = 0
        self.last_sent = 0

    def interrupt(self, signum, frame) -> None:
        """Signal handler: SIGINT stops the trace after the current probe."""
        if signum != signal.SIGINT:
            return
        self.interrupted = True

    def send_probe(self, packet: bytes) -> None:
        """Send one probe to the target and note when it left."""
        target = str(ipaddress.IPv4Address(self.options.target_ip & 0xFFFFFFFF))
        try:
            self.send_sock.sendto(packet, (target, 0))
        except OSError as exc:
            print(f"sendto: {exc}", file=sys.stderr)
        self.last_sent = self.clock()

    def _record(self, index: int, src_ip: int, received: int) -> None:
        if 0 <= index < len(self.probes):
            self.probes[index] = Probe(ip=src_ip, ts=received - self.last_sent)

    def receive(self, index: int) -> ReplyKind:
        """Wait for the answer to probe ``index``; NONE on timeout or interrupt."""
        expected_port = (self.options.base_port + index) & 0xFFFF
        while not self.interrupted:
            try:
                data = self.recv_sock.recv(REPLY_BUFFER_SIZE)
            except OSError:
                return ReplyKind.NONE
            received = self.clock()
            try:
                reply = parse_reply(data)
            except ValueError:
                continue
            kind = classify(reply, expected_port)
            if kind is ReplyKind.NONE:
                continue
            if reply.orig_port is not None:
                slot = reply.orig_port - self.options.base_port
            else:
                slot = index
            self._record(slot, reply.src_ip, received)
            return kind
        return ReplyKind.NONE

    def _next_hop(self) -> None:
        self.current_ttl = (self.current_ttl + 1) & 0xFF
        self.current_hop += 1

    def _print_hop(self, out: TextIO, base: int) -> None:
        probes = self.probes[base:base + self.options.nb_prob]
        out.write(
            self.table.hop_block(
                self.current_hop, self.current_ttl, probes, self.current_hop == 1
            )
        )
        out.flush()

    def run(self, out: TextIO) -> bool:
        """Probe hop after hop, writing the table to ``out``.

        Returns True when the destination answered.
        """
        opts = self.options
        out.write(self.table.header())
        out.flush()
        for index in range(opts.max_hop * opts.nb_prob):
            if self.interrupted:
                break
            position = index % opts.nb_prob
            if position == 0:
                self._next_hop()
            packet = build_probe(
                opts.src_ip,
                opts.target_ip,
                self.current_ttl,
                opts.tos,
                opts.ip_ident,
                opts.base_port + index,
            )
            self.send_probe(packet)
            kind = self.receive(index)
            if position == opts.nb_prob - 1:
                self._print_hop(out, index - position)
                if kind is ReplyKind.REACHED:
                    return True
        return False