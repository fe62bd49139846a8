"""The command that runs a trace from the command line."""

from __future__ import annotations

import signal
import sys
from contextlib import ExitStack
from typing import Optional, Sequence

from .options import PROG_NAME, UsageError, help_text, parse_args, usage_text
from .table import Table
from .tracer import TIMEOUT, SocketSetupError, Tracer, open_socket

VERSION = "0.0.0"

OK = 0
WRONG_ARG = 2
FAILED_INIT_SIGNAL = 3
FAILED_INIT_SOCKET = 4

TRY_HELP = (
    f"Try '{PROG_NAME} --help' or '{PROG_NAME} --usage' for more information."
)


def _run_command(command: str) -> int:
    if command == "help":
        sys.stdout.write(help_text())
    elif command == "usage":
        sys.stdout.write(usage_text())
    else:
        sys.stdout.write(f"{PROG_NAME} {VERSION}\n")
    return OK


def run(argv: Sequence[str]) -> int:
    """Parse ``argv`` (without the program name), trace, and return the exit status."""
    try:
        options = parse_args(argv)
    except UsageError as exc:
        print(str(exc), file=sys.stderr)
        print(TRY_HELP, file=sys.stderr)
        return WRONG_ARG
    if options.command is not None:
        return _run_command(options.command)

    with ExitStack() as stack:
        try:
            previous_alarm = signal.signal(signal.SIGALRM, signal.SIG_IGN)
            stack.callback(signal.signal, signal.SIGALRM, previous_alarm)
        except (ValueError, OSError, AttributeError):
            print("signal: failed to ignore SIGALRM", file=sys.stderr)
            return FAILED_INIT_SIGNAL

        try:
            recv_sock = stack.enter_context(open_socket(None, TIMEOUT))
            send_sock = stack.enter_context(open_socket(options.interface, TIMEOUT))
        except SocketSetupError as exc:
            print(str(exc), file=sys.stderr)
            return FAILED_INIT_SOCKET

        tracer = Tracer(
            options, send_sock, recv_sock, Table(resolve_ip=options.resolve_ip)
        )
        try:
            previous_int = signal.signal(signal.SIGINT, tracer.interrupt)
            stack.callback(signal.signal, signal.SIGINT, previous_int)
        except (ValueError, OSError):
            print("signal: failed to set SIGINT", file=sys.stderr)
            return FAILED_INIT_SIGNAL

        tracer.run(sys.stdout)
    return OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the command."""
    if argv is None:
        argv = sys.argv[1:]
    return run(argv)