"""The coloured box-drawing table that shows each hop's probes."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

CSI = "\x1b["
RST = CSI + "0m"
UND = CSI + "4m"
RUND = CSI + "24m"
DIM = CSI + "2m"
GRE = CSI + "32m"
TABLE_COLOR = DIM + GRE
CLEAR_UP = CSI + "2K" + CSI + "1A"

RAINBOW = (
    CSI + "38;5;196m",
    CSI + "38;5;208m",
    CSI + "38;5;226m",
    CSI + "38;5;46m",
    CSI + "38;5;51m",
    CSI + "38;5;21m",
    CSI + "38;5;129m",
)

_BORDERS = {
    "header": ("╭───┬─────────────────┬─────────────", "┬" + "─" * 52, "╮"),
    "header_sep": ("┝━━━┿━━━━━━━━━━━━━━━━━┿━━━━━━━━━━━━━", "┿" + "━" * 52, "┥"),
    "main_sep": ("╞═══╪═════════════════╪═════════════", "╪" + "═" * 52, "╡"),
    "footer": ("╰───┴─────────────────┴─────────────", "┴" + "─" * 52, "╯"),
}

BAR = TABLE_COLOR + "│" + RST


@dataclass
class Probe:
    """One probe's answer: the replying address and round-trip time in µs."""

    ip: int = 0
    ts: int = 0


def rainbow_color(index: int) -> str:
    """The colour used for the hop at zero-based ``index``."""
    return RAINBOW[index % len(RAINBOW)]


def is_same_ip(probes: Sequence[Probe]) -> bool:
    """True when every probe of a hop was answered by the same address."""
    return all(probe.ip == probes[0].ip for probe in probes)


def _ip_str(ip: int) -> str:
    return str(ipaddress.IPv4Address(ip & 0xFFFFFFFF))


def _reverse_lookup(ip: int) -> Optional[str]:
    try:
        return socket.gethostbyaddr(_ip_str(ip))[0]
    except (OSError, UnicodeError):
        return None


@dataclass
class Table:
    """Renders the trace table, optionally with a resolved-name column."""

    resolve_ip: bool = False
    resolver: Optional[Callable[[int], Optional[str]]] = None

    def _border(self, kind: str) -> str:
        start, extra, end = _BORDERS[kind]
        return start + (extra if self.resolve_ip else "") + end

    def header(self) -> str:
        """Top border, column titles and the line under them."""
        titles = (
            TABLE_COLOR + self._border("header") + "\n"
            + "│" + RST + UND + "HOP" + RUND + TABLE_COLOR
            + "│" + RST + "       " + UND + "IP" + RUND + "        " + TABLE_COLOR
            + "│" + RST + "    " + UND + "PROBS" + RUND + "    " + TABLE_COLOR
            + "│" + RST
        )
        if self.resolve_ip:
            titles += (
                " " * 20 + UND + "RESOLVED IP" + RUND + " " * 20
                + TABLE_COLOR + "│" + RST
            )
        return titles + "\n" + self.header_separator()

    def header_separator(self) -> str:
        """The heavy line under the column titles."""
        return TABLE_COLOR + self._border("header_sep") + "\n" + RST

    def separator(self) -> str:
        """The double line between two hops."""
        return TABLE_COLOR + self._border("main_sep") + "\n" + RST

    def footer(self) -> str:
        """The bottom border."""
        return TABLE_COLOR + self._border("footer") + "\n" + RST

    def _resolve(self, ip: int) -> Optional[str]:
        if not ip:
            return None
        return (self.resolver or _reverse_lookup)(ip)

    def line(self, index: int, ttl: int, probe: Probe, same_ip: bool, color: str) -> str:
        """One row of the table, for the probe at ``index`` within its hop."""
        repeat = bool(index) and same_ip
        if index:
            parts = [BAR, "   ", BAR]
        else:
            parts = [BAR, f"{color}{ttl:3d}{RST}", BAR]

        if probe.ip:
            if repeat:
                parts.append(" " * 17)
            else:
                parts.append(f" {color}{_ip_str(probe.ip):>15}{RST} ")
        else:
            parts.append(f" {color}{'─' * 15}{RST} ")
        parts.append(BAR)

        if not probe.ts:
            parts.append(f"      {color}*{RST}      ")
        else:
            parts.append(f"{color}{probe.ts // 1000:5d}.{probe.ts % 1000:03d} ms{RST} ")

        if self.resolve_ip:
            parts.append(BAR)
            if repeat:
                parts.append(" " * 51)
            else:
                name = self._resolve(probe.ip)
                if name is None and probe.ip:
                    name = _ip_str(probe.ip)
                if name is not None:
                    parts.append(f" {color}{name:>49}{RST} ")
                else:
                    parts.append(f"     {color}{'─' * 41}{RST}     ")
        parts.append(BAR + "\n")
        return "".join(parts)

    def hop_block(self, hop: int, ttl: int, probes: Sequence[Probe], first: bool) -> str:
        """All rows for hop number ``hop`` (from 1), closed by the footer.

        Unless it is the first block, the previous footer is erased and
        replaced by a separator.
        """
        color = rainbow_color(hop - 1)
        same_ip = is_same_ip(probes)
        out = "" if first else CLEAR_UP + self.separator()
        out += "".join(
            self.line(index, ttl, probe, same_ip, color)
            for index, probe in enumerate(probes)
        )
        return out + self.footer()