"""Parsing of port mapping rules and of mapping files."""

from __future__ import annotations

import sys
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

_MAX_PORT = 0xFFFF


class Protocol(Enum):
    """A transport protocol a single proxy runs on."""

    TCP = "tcp"
    UDP = "udp"


class RuleProtocol(Enum):
    """The protocol field of a rule line, which may name both protocols."""

    TCP = "tcp"
    UDP = "udp"
    TCP_UDP = "t+u"

    @property
    def protocols(self) -> tuple[Protocol, ...]:
        """The concrete protocols this rule expands to, TCP first."""
        if self is RuleProtocol.TCP:
            return (Protocol.TCP,)
        if self is RuleProtocol.UDP:
            return (Protocol.UDP,)
        return (Protocol.TCP, Protocol.UDP)


class MappingRuleParseError(ValueError):
    """Base class for errors in a single rule line."""

    def _report(self, line: str) -> str:
        return f"{self} in {line}"


class EmptyRuleError(MappingRuleParseError):
    """The line holds no rule (blank or comment only)."""

    def __init__(self) -> None:
        super().__init__("Empty rule")


class _MissingFieldError(MappingRuleParseError):
    def _report(self, line: str) -> str:
        return f"{self}: {line}"


class MissingListenPortError(_MissingFieldError):
    """The rule has a protocol but no listen port."""

    def __init__(self) -> None:
        super().__init__("Missing listen port")


class MissingUpstreamError(_MissingFieldError):
    """The rule has no upstream address."""

    def __init__(self) -> None:
        super().__init__("Missing upstream")


class MissingUpstreamPortError(_MissingFieldError):
    """The upstream address has no ':port' part."""

    def __init__(self) -> None:
        super().__init__("Missing upstream port")


class InvalidProtocolError(MappingRuleParseError):
    """The protocol field is not tcp, udp or t+u."""

    def __init__(self, protocol: str) -> None:
        super().__init__(f"Invalid protocol: {protocol}")
        self.protocol = protocol


class InvalidListenPortError(MappingRuleParseError):
    """The listen port or port range cannot be parsed."""

    def __init__(self, port: str) -> None:
        super().__init__(f"Invalid listen port: {port}")
        self.port = port


class InvalidListenPortRangeError(MappingRuleParseError):
    """The listen port range starts after it ends."""

    def __init__(self, port_range: str) -> None:
        super().__init__(f"Invalid listen port range: {port_range}")
        self.port_range = port_range


class InvalidUpstreamError(MappingRuleParseError):
    """The upstream address cannot be parsed."""

    def __init__(self, upstream: str) -> None:
        super().__init__(f"Invalid upstream: {upstream}")
        self.upstream = upstream


class InvalidUpstreamPortError(MappingRuleParseError):
    """The upstream port or port range cannot be parsed."""

    def __init__(self, port: str) -> None:
        super().__init__(f"Invalid upstream port: {port}")
        self.port = port


class InvalidUpstreamPortRangeError(MappingRuleParseError):
    """The upstream port range starts after it ends."""

    def __init__(self, port_range: str) -> None:
        super().__init__(f"Invalid upstream port range: {port_range}")
        self.port_range = port_range


class UnmatchedPortRangeError(MappingRuleParseError):
    """The listen and upstream port ranges differ in length."""

    def __init__(self, listen_port: range, upstream_port: range) -> None:
        super().__init__(
            "Unmatched port range: "
            f"{listen_port.start}-{listen_port.stop - 1} -> "
            f"{upstream_port.start}-{upstream_port.stop - 1}"
        )
        self.listen_port = listen_port
        self.upstream_port = upstream_port


def _parse_port(text: str) -> int:
    digits = text[1:] if text.startswith("+") else text
    if not digits or not (digits.isascii() and digits.isdigit()):
        raise ValueError(text)
    value = int(digits)
    if value > _MAX_PORT:
        raise ValueError(text)
    return value


def _parse_port_range(text: str) -> tuple[int, int]:
    first, sep, rest = text.partition("-")
    start = _parse_port(first)
    end = _parse_port(rest) if sep else start
    return start, end


@dataclass(frozen=True)
class MappingRuleRaw:
    """One parsed rule line, before it is expanded to single ports."""

    protocol: RuleProtocol
    listen_port: range
    upstream_host: str
    upstream_port: range

    @classmethod
    def parse(cls, line: str) -> MappingRuleRaw:
        """Parse a rule line such as ``tcp 8000-8010 host:9000-9010``."""
        parts = iter(line.split("#", 1)[0].split())

        protocol_text = next(parts, None)
        if protocol_text is None:
            raise EmptyRuleError()
        protocol_text = protocol_text.lower()
        try:
            protocol = RuleProtocol(protocol_text)
        except ValueError:
            raise InvalidProtocolError(protocol_text) from None

        listen = next(parts, None)
        if listen is None:
            raise MissingListenPortError()
        upstream = next(parts, None)
        if upstream is None:
            raise MissingUpstreamError()

        try:
            listen_from, listen_to = _parse_port_range(listen)
        except ValueError:
            raise InvalidListenPortError(listen) from None
        if listen_from > listen_to:
            raise InvalidListenPortRangeError(listen)

        host, sep, port_text = upstream.partition(":")
        if not host:
            host = "localhost"
        if not sep:
            raise MissingUpstreamPortError()
        try:
            upstream_from, upstream_to = _parse_port_range(port_text)
        except ValueError:
            raise InvalidUpstreamPortError(upstream) from None
        if upstream_from > upstream_to:
            raise InvalidUpstreamPortRangeError(upstream)

        listen_port = range(listen_from, listen_to + 1)
        upstream_port = range(upstream_from, upstream_to + 1)
        if len(listen_port) != len(upstream_port):
            raise UnmatchedPortRangeError(listen_port, upstream_port)

        return cls(protocol, listen_port, host, upstream_port)


@dataclass(frozen=True)
class MappingRule:
    """A single-port mapping from a local listen address to an upstream."""

    protocol: Protocol
    listen: str
    upstream: str

    def __str__(self) -> str:
        return f"{self.listen}->{self.upstream}"


def _warn(message: str) -> None:
    print(message, file=sys.stderr)


def read_mapping_file(lines: Iterable[str]) -> list[MappingRule]:
    """Read rule lines and expand them to one rule per protocol and port.

    Invalid lines are reported on stderr and skipped. A later rule for the
    same protocol and port replaces an earlier one, with a warning.
    """
    rules: dict[tuple[Protocol, int], tuple[str, int]] = {}
    for raw_line in lines:
        line = raw_line.strip()
        try:
            entry = MappingRuleRaw.parse(line)
        except EmptyRuleError:
            continue
        except MappingRuleParseError as error:
            _warn(f"[warning][parse] {error._report(line)}")
            continue

        for listen_port, upstream_port in zip(entry.listen_port, entry.upstream_port):
            for protocol in entry.protocol.protocols:
                key = (protocol, listen_port)
                if key in rules:
                    _warn(
                        f"[warning][{protocol.value}] "
                        f"Port {listen_port} will be overwritten"
                    )
                rules[key] = (entry.upstream_host, upstream_port)

    return [
        MappingRule(
            protocol=protocol,
            listen=f"0.0.0.0:{listen}",
            upstream=f"{host}:{port}",
        )
        for (protocol, listen), (host, port) in rules.items()
    ]