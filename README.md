# hoptrace

`hoptrace` shows the path IPv4 packets take to reach a host. It sends UDP
probes with a time-to-live that goes up by one for each hop. Routers on the
way answer with ICMP *time exceeded*. The destination answers with ICMP *port
unreachable*, and the trace stops there. The results come out as a coloured
table, with one block of rows for each hop.

## Installation

```
pip install .
```

The package uses only the standard library. To run the tests:

```
pip install .[test]
pytest
```

## Usage

Raw sockets need root privileges:

```
sudo hoptrace example.com
```

The target may be a dotted IPv4 address or a host name. A target that
starts with `localhost` means 127.0.0.1, and one that starts with `0.0.0.0`
means 0.0.0.0. Exactly one target must be given.

Options:

| Option | Meaning |
| --- | --- |
| `-?`, `--help` | Show the help text |
| `--usage` | Show a short usage line |
| `-V`, `--version` | Print the program version |
| `-v`, `--verbose` | Accepted; it does not change the output |
| `-m`, `--max-hop NUM` | Highest number of hops (default 30) |
| `-n`, `--nb-prob NUM` | Probes per hop, 1 to 5 (default 3) |
| `-r`, `--resolve-ip` | Add a column with reverse-resolved host names |
| `-S`, `--start-hop NUM` | First TTL to probe (default 1, at most the max hop) |
| `-i`, `--interface IFACE` | Bind the sending socket to an interface |
| `-I`, `--ip-identification NUM` | IP identification field (default 420) |
| `-s`, `--source-ip IP` | Source address written into the IP header |
| `-t`, `--tos TOS` | IP type-of-service byte |
| `-b`, `--base-port NUM` | First UDP port used for probes (default 33434) |

A numeric option with a value that is out of range or not a number gives a
warning on standard error and falls back to a default or the nearest limit.

Each probe uses its own port: the base port plus the probe's index. This is
how a "time exceeded" reply is matched to the probe that caused it. A probe
that gets no reply within half a second is shown as `*`. Press Ctrl-C to stop
a trace early: the probe under way finishes waiting, and no further probes
are sent.

Exit status: 0 on success (including `--help`, `--usage` and `--version`),
2 for wrong arguments or an unknown host, 3 when signal handlers cannot be
installed, 4 when the raw sockets cannot be opened (for example without root).

## Library use

The parts of the program can also be used on their own:

- `hoptrace.options.parse_args(argv)` returns an `Options` value. It raises
  `UsageError` when the arguments are wrong. The single-option helpers
  (`parse_max_hop`, `parse_nb_prob`, `parse_start_hop`, `parse_base_port`,
  `parse_ip_identification`, `parse_source_ip`, `parse_tos`) and
  `resolve_target` are available too, as are `help_text()` and `usage_text()`.
- `hoptrace.packet.build_probe(src_ip, dst_ip, ttl, tos, ident, port)` builds
  the bytes of an IPv4/UDP probe. `parse_reply(data)` decodes an ICMP reply
  into a `Reply`, `classify(reply, port)` returns a `ReplyKind`, and
  `format_packet(data)` gives a readable dump of a probe.
- `hoptrace.table.Table` draws the result table from `Probe` values.
- `hoptrace.tracer.open_socket(interface, timeout)` opens a raw socket and
  raises `SocketSetupError` on failure. `Tracer(options, send_sock,
  recv_sock)` runs a trace with `run(out)` and writes the table to a stream;
  it returns True when the destination answered.
- `hoptrace.cli.run(argv)` returns the exit status without leaving the
  interpreter.

## Limits

- Only IPv4 and UDP probes are supported; there is no IPv6 and no ICMP or
  TCP probe mode.
- The `--verbose` flag is parsed but no extra output is printed.
- Raw sockets and `SO_BINDTODEVICE` make the tracer Linux-only in practice.