"""Command line entry point: run every proxy listed in a mapping file."""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import TextIO

from portmapper.mapping_rule import MappingRule, Protocol, read_mapping_file
from portmapper.tcp_proxy import TcpProxy
from portmapper.udp_proxy import UdpProxy

MAPPING_FILE = "mapping.txt"


def get_udp_buffer_size() -> int:
    """Return the system's default receive buffer size for UDP sockets."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        return sock.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF)


def open_mapping_file(name: str = MAPPING_FILE) -> TextIO:
    """Open the mapping file from the working directory, else beside the program."""
    try:
        return open(name, encoding="utf-8")
    except OSError:
        program_dir = Path(sys.argv[0]).resolve().parent
        return open(program_dir / name, encoding="utf-8")


async def _run_rule(rule: MappingRule, udp_buffer_size: int) -> None:
    if rule.protocol is Protocol.TCP:
        proxy = TcpProxy(rule.listen, rule.upstream)
    else:
        proxy = UdpProxy(rule.listen, rule.upstream, udp_buffer_size)
    try:
        await proxy.run()
    except OSError as error:
        print(
            f"[warning][{rule.protocol.value}][{rule}] Failed: {error}",
            file=sys.stderr,
            flush=True,
        )


async def run_rules(rules: Iterable[MappingRule], udp_buffer_size: int) -> None:
    """Run one proxy per rule until all of them have stopped."""
    tasks = [asyncio.create_task(_run_rule(rule, udp_buffer_size)) for rule in rules]
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            print(f"[warning][thread] Failed: {result}", file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="portmapper",
        description="Forward TCP and UDP ports as listed in a mapping file.",
    )
    parser.add_argument(
        "mapping_file",
        nargs="?",
        default=MAPPING_FILE,
        help=f"rule file to read (default: {MAPPING_FILE})",
    )
    args = parser.parse_args(argv)

    try:
        udp_buffer_size = get_udp_buffer_size()
        with open_mapping_file(args.mapping_file) as mapping:
            rules = read_mapping_file(mapping)
    except OSError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        asyncio.run(run_rules(rules, udp_buffer_size))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())