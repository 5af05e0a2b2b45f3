"""Command line entry point for the ping plugin."""

from __future__ import annotations

import argparse
import sys
import tempfile
from typing import Callable, List, Optional

from ._config import get_settings
from ._exceptions import ResolutionError, TransportError
from ._hosts import parse_hosts
from ._icmp import EchoTransport, Pinger, logger, setup_logging
from ._plugin import MetricsSink, PingPlugin, default_tempfile


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rttping",
        description="Measure ICMP round trip times and print them as plugin metrics",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-host",
        "--host",
        default="127.0.0.1:localhost",
        help="IPv4 Address[[:Group]:Metric Label],[IPv6 Address]:[[:Group]:Label],FQDN[[:Group]:Label],...",
    )
    parser.add_argument("-tempfile", "--tempfile", default="", help="Temp file name")
    parser.add_argument(
        "-count",
        "--count",
        type=int,
        default=1,
        help="Sending (and receiving) count ping packets.",
    )
    parser.add_argument(
        "-waittime", "--waittime", type=int, default=1000, help="Wait time, Max RTT(ms)"
    )
    parser.add_argument(
        "-acceptmiss",
        "--acceptmiss",
        type=int,
        default=0,
        help="Accept out of wait time count ping packets.",
    )
    parser.add_argument(
        "-6", dest="ipv6", action="store_true", help="Enable IPv6."
    )
    parser.add_argument(
        "-source",
        "--source",
        default="",
        help="Source IP Address. If the IP Address is invalid, it will be ignored.",
    )
    parser.add_argument("-prefix", "--prefix", default="", help="Prefix of graph metrics.")
    parser.add_argument(
        "-stacked", "--stacked", action="store_true", help="Use Stacked graph."
    )
    return parser


def run(
    argv: Optional[List[str]] = None,
    *,
    transport_factory: Callable[[], EchoTransport] = Pinger,
) -> int:
    settings = get_settings()
    setup_logging(settings.ping_log_level)

    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.count < 1:
        parser.error("-count must be at least 1")
    if args.waittime < 1:
        parser.error("-waittime must be at least 1")
    if not 0 <= args.acceptmiss < args.count:
        parser.error("-acceptmiss must be between 0 and count - 1")

    try:
        hosts = parse_hosts(
            args.host, args.ipv6, settings.mackerel_agent_plugin_meta
        )
    except ResolutionError as exc:
        print(exc, file=sys.stderr)
        return 1

    plugin = PingPlugin(
        hosts,
        count=args.count,
        wait_time=args.waittime / 1000.0,
        accept_miss=args.acceptmiss,
        source=args.source or None,
        stacked=args.stacked,
        prefix=args.prefix,
        legacy_meta=settings.meta,
        transport_factory=transport_factory,
    )

    if settings.meta:
        MetricsSink(plugin).output_definitions(sys.stdout)
        return 0

    tempfile_path = args.tempfile or default_tempfile(
        [host.address for host in hosts],
        settings.mackerel_plugin_workdir or tempfile.gettempdir(),
    )
    try:
        MetricsSink(plugin, tempfile=tempfile_path).output_values(sys.stdout)
    except TransportError as exc:
        logger.debug("Probe aborted", exc_info=True)
        print(f"OutputValues: {exc}", file=sys.stderr)
        return 1
    return 0
