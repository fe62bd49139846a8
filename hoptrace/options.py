"""Command-line options: parsing, validation and the help texts."""

from __future__ import annotations

import getopt
import ipaddress
import re
import socket
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

PROG_NAME = "hoptrace"

DEFAULT_IP_IDENT = 420
DEFAULT_BASE_PORT = 33434
DEFAULT_NB_PROB = 3
DEFAULT_MAX_HOP = 30
DEFAULT_START_HOP = 1
MAX_NB_PROB = 5
LOCALHOST_IP = 0x7F000001

_INT_RE = re.compile(r"[+-]?\d+")

_SHORT_OPTS = "?Vvm:n:I:rS:i:s:t:b:"
_LONG_OPTS = [
    "help",
    "usage",
    "version",
    "verbose",
    "max-hop=",
    "nb-prob=",
    "ip-identification=",
    "resolve-ip",
    "start-hop=",
    "interface=",
    "source-ip=",
    "tos=",
    "base-port=",
]

_HELP_BODY = """
Base options: 

  -?, --help                       Give this help list.
      --usage                      Give a short usage message.
  -V, --version                    Print program version.
  -v, --verbose                    Verbose output.
  -m, --max-hop NUM                Set the max number of hops.
  -n, --nb-prob NUM                Set the number of probes per hop.
                                   Must be between 1-5.
  -r, --resolve-ip                 Try to resolve IP addresses to their domain names.
  -S, --start-hop                  Start from hop NUM (default 1).
  -i, --interface INTERFACE        Bind the interface INTERFACE to the socket

IP options: 

  -I, --ip-identification NUM      Set the IP identification.
  -s, --source-ip IP               Set the source IP address.
  -t, --tos TOS                    Set the TOS.

UDP options: 

  -b, --base-port                  Start from port NUM (default 33434).

"""


class UsageError(Exception):
    """Raised when the command line cannot be used."""

    status = 2


@dataclass
class Options:
    """Validated settings for one trace."""

    target: Optional[str] = None
    target_ip: int = 0
    interface: Optional[str] = None
    max_hop: int = DEFAULT_MAX_HOP
    start_hop: int = DEFAULT_START_HOP
    nb_prob: int = DEFAULT_NB_PROB
    base_port: int = DEFAULT_BASE_PORT
    ip_ident: int = DEFAULT_IP_IDENT
    src_ip: int = 0
    tos: int = 0
    verbose: bool = False
    resolve_ip: bool = False
    command: Optional[str] = None


def _warn(message: str) -> None:
    print(message, file=sys.stderr)


def _to_int(value: str) -> Optional[int]:
    text = value.strip()
    if not _INT_RE.fullmatch(text):
        return None
    return int(text)


def _ip_from_str(value: str) -> int:
    """Dotted IPv4 text to a host-order integer, 0 when it is not one."""
    try:
        return int(ipaddress.IPv4Address(value.strip()))
    except ValueError:
        return 0


def help_text() -> str:
    """The full help message."""
    header = f"Usage: {PROG_NAME} [OPTION...] ARG\n"
    footer = "Report bugs to the maintainers.\n"
    return header + _HELP_BODY + "\n" + footer


def usage_text() -> str:
    """The short usage message."""
    return f"Usage: {PROG_NAME} [--verbose] [--help] [--usage] [--version] ARG\n"


def resolve_target(target: str) -> int:
    """Turn a target name or address into a host-order IPv4 integer."""
    if target.startswith("0.0.0.0"):
        return 0
    if target.startswith("localhost"):
        return LOCALHOST_IP
    address = _ip_from_str(target)
    if address:
        return address
    try:
        address = _ip_from_str(socket.gethostbyname(target))
    except (OSError, UnicodeError):
        address = 0
    if address:
        return address
    raise UsageError(f"{PROG_NAME}: unknown host")


def parse_base_port(value: Optional[str]) -> int:
    """Base UDP port; out-of-range values fall back with a warning."""
    if value is None:
        return DEFAULT_BASE_PORT
    number = _to_int(value)
    if number is None or number > 0xFFFF:
        _warn(f"base-port wrong value. Defaulting to {DEFAULT_BASE_PORT}")
        return DEFAULT_BASE_PORT
    if number <= 0:
        _warn("base-port value too low. Defaulting to 1")
        return 1
    return number


def parse_ip_identification(value: Optional[str]) -> int:
    """IP identification field; invalid values fall back to the default."""
    if value is None:
        return DEFAULT_IP_IDENT
    number = _to_int(value)
    if number is None:
        _warn(f"ip_ident wrong value. Defaulting to {DEFAULT_IP_IDENT}")
        return DEFAULT_IP_IDENT
    if number <= 0:
        _warn(f"ip_ident value too low. Defaulting to {DEFAULT_IP_IDENT}")
        return DEFAULT_IP_IDENT
    if number >= 0xFFFF:
        _warn(f"ip_ident value too high. Defaulting to {DEFAULT_IP_IDENT}")
        return DEFAULT_IP_IDENT
    return number


def parse_max_hop(value: Optional[str]) -> int:
    """Maximum number of hops; must be positive."""
    if value is None:
        return DEFAULT_MAX_HOP
    number = _to_int(value)
    if number is None or number <= 0:
        _warn(f"Invalid max-hop value. Defaulting to {DEFAULT_MAX_HOP}")
        return DEFAULT_MAX_HOP
    return number


def parse_nb_prob(value: Optional[str]) -> int:
    """Number of probes per hop, kept between 1 and 5."""
    if value is None:
        return DEFAULT_NB_PROB
    number = _to_int(value)
    if number is None:
        _warn("nb-prob wrong value. Defaulting to 1")
        return 1
    if number <= 0:
        _warn("nb-prob value too low. Defaulting to 1")
        return 1
    if number > MAX_NB_PROB:
        _warn(f"nb-prob value too high. Defaulting to {MAX_NB_PROB}")
        return MAX_NB_PROB
    return number


def parse_start_hop(value: Optional[str], max_hop: int) -> int:
    """First hop to probe, kept between 1 and max_hop."""
    if value is None:
        return DEFAULT_START_HOP
    number = _to_int(value)
    if number is None:
        _warn("start-hop wrong value. Defaulting to 1")
        return DEFAULT_START_HOP
    if number <= 0:
        _warn("start-hop value too low. Defaulting to 1")
        return DEFAULT_START_HOP
    if number > max_hop:
        _warn(f"start-hop value too high. Defaulting to {max_hop}")
        return max_hop
    return number


def parse_source_ip(value: Optional[str]) -> int:
    """Source address as a host-order integer, 0 when absent or invalid."""
    if value is None:
        return 0
    address = _ip_from_str(value)
    if not address:
        _warn("source-ip wrong value")
    return address


def parse_tos(value: Optional[str]) -> int:
    """Type-of-service byte."""
    if value is None:
        return 0
    number = _to_int(value)
    if number is None:
        _warn("tos wrong value")
        return 0
    return number & 0xFF


def parse_args(argv: Sequence[str]) -> Options:
    """Parse the arguments that follow the program name."""
    try:
        pairs, positionals = getopt.gnu_getopt(list(argv), _SHORT_OPTS, _LONG_OPTS)
    except getopt.GetoptError as exc:
        raise UsageError(f"{PROG_NAME}: {exc.msg}") from exc

    options = Options()
    values: dict[str, str] = {}
    short_names = {
        "-m": "max-hop",
        "-n": "nb-prob",
        "-I": "ip-identification",
        "-S": "start-hop",
        "-i": "interface",
        "-s": "source-ip",
        "-t": "tos",
        "-b": "base-port",
    }
    for flag, arg in pairs:
        if flag in ("-?", "--help"):
            options.command = options.command or "help"
        elif flag == "--usage":
            options.command = options.command or "usage"
        elif flag in ("-V", "--version"):
            options.command = options.command or "version"
        elif flag in ("-v", "--verbose"):
            options.verbose = True
        elif flag in ("-r", "--resolve-ip"):
            options.resolve_ip = True
        else:
            name = short_names.get(flag, flag.lstrip("-"))
            values[name] = arg

    if options.command is not None:
        return options

    if len(positionals) != 1:
        raise UsageError("Only one arg is needed")
    options.target = positionals[0]
    options.target_ip = resolve_target(options.target)
    options.interface = values.get("interface")
    options.max_hop = parse_max_hop(values.get("max-hop"))
    options.start_hop = parse_start_hop(values.get("start-hop"), options.max_hop)
    options.nb_prob = parse_nb_prob(values.get("nb-prob"))
    options.base_port = parse_base_port(values.get("base-port"))
    options.ip_ident = parse_ip_identification(values.get("ip-identification"))
    options.src_ip = parse_source_ip(values.get("source-ip"))
    options.tos = parse_tos(values.get("tos"))
    return options