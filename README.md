# portmapper

Forwards TCP and UDP ports to other hosts and ports. The rules come from a
plain-text file, `mapping.txt` by default.

## Installation

```
pip install .
```

## Running

Put a `mapping.txt` in the working directory and start the mapper:

```
portmapper
```

Another rules file can be given as the only argument:

```
portmapper my-rules.txt
```

If the file cannot be opened from the working directory, it is looked for
in the directory of the program that was started. If it cannot be found
there either, the error is printed and the command exits with status 1.

Each rule opens a listener on `0.0.0.0`. Informational messages go to
standard output and warnings to standard error. A listener that fails to
start is reported on standard error, and the other rules keep running. The
mapper runs until it is interrupted; Ctrl-C ends it with status 130.

## The rules file

Each line holds one rule with three fields separated by whitespace:

```
<protocol> <listen port or range> [host]:<upstream port or range>
```

- `protocol` is `tcp`, `udp` or `t+u`, which means both. Case does not matter.
- The listen port is a single port such as `8080` or a range such as
  `8000-8010`. Ports run from 0 to 65535.
- The upstream is `host:port` or `host:from-to`. The host ends at the first
  `:`. If the host is empty, as in `:80`, it is `localhost`.
- A listen range and an upstream range must be the same length. Ports are
  paired in order.
- Anything after `#` is a comment. Blank lines are ignored. Fields after the
  third are ignored.

Example:

```
# web server on this machine
tcp  8080        :80
# game server, both protocols
t+u  27015       192.168.1.20:27015
# a block of ports
udp  9000-9009   10.0.0.5:19000-19009
```

A malformed line is reported with a warning and skipped. The other lines are
still read. If a later rule maps the same protocol and listen port, it
replaces the earlier one, and a warning is printed.

## Behaviour

- **TCP:** every accepted connection gets its own upstream connection. Data
  flows both ways; when one side finishes sending, the other is half-closed.
  The bytes sent and received are logged when the connection ends.
- **UDP:** each client address gets its own upstream socket. Replies go back
  to the client that sent the request. A session with no traffic for 60
  seconds is closed. Datagrams longer than the system's default UDP receive
  buffer size are cut to that size.

## Library use

The parts are also available from Python:

- `portmapper.mapping_rule`: `MappingRuleRaw.parse` parses a single line and
  raises a subclass of `MappingRuleParseError` (itself a `ValueError`) when
  the line is not a valid rule; a blank or comment-only line raises
  `EmptyRuleError`. `read_mapping_file` takes any iterable of lines, such as
  an open file, and returns one `MappingRule` per protocol and listen port.
- `portmapper.tcp_proxy.TcpProxy(listen, upstream)` and
  `portmapper.udp_proxy.UdpProxy(listen, upstream, buffer_size,
  idle_timeout=60.0)`: the forwarders. Addresses are `host:port` strings.
  Each one is started with its `run()` coroutine, which raises `OSError` if
  the listen address cannot be bound and otherwise runs until cancelled.
- `portmapper.cli`: `run_rules(rules, udp_buffer_size)` runs a list of rules
  together, `get_udp_buffer_size()` returns the system's default UDP receive
  buffer size, `open_mapping_file(name)` opens a rules file as the command
  does, and `main(argv)` is the command itself.

## Tests

```
pip install .[test]
pytest
```