import argparse
from collections.abc import (
    Sequence,
)
import logging
import sys

import trio

from conntest.config import (
    ProbeConfig,
    build_probe_config,
)
from conntest.exceptions import (
    ConfigError,
)
from conntest.probe import (
    run_probe,
)
from conntest.utils.logging import (
    setup_logging,
)

logger = logging.getLogger("conntest.cli")

description = """
Probe connectivity and bandwidth between conntest instances over TCP and
UDP. Each instance can listen on several ports and dial several peers.
"""

example = (
    "conntest --name a --listen udp:1234 --listen tcp:1234\n"
    "conntest --name b --connect 'udp://127.0.0.1:1234?monitor-bandwidth'"
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="conntest",
        description=description,
        epilog=f"examples:\n{example}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--name",
        required=True,
        help="name of this instance, shown to the peers it connects to",
    )
    parser.add_argument(
        "--listen",
        action="append",
        default=[],
        metavar="<PROTO>:<PORT>",
        help="protocol and port to listen on, e.g. tcp:1234 (repeatable)",
    )
    parser.add_argument(
        "--connect",
        action="append",
        default=[],
        metavar="<URI>",
        help=(
            "peer to connect to, e.g. tcp://1.2.3.4:1234?monitor-bandwidth; "
            "the packet-size query parameter sets the probe packet size "
            "(repeatable)"
        ),
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="seconds to run before stopping (default: run until interrupted)",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> ProbeConfig:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = build_probe_config(
            name=args.name,
            listens=args.listen,
            connects=args.connect,
            timeout=args.timeout,
        )
    except ConfigError as error:
        parser.error(str(error))
    if not config.listens and not config.connects:
        parser.error("nothing to do: give at least one --listen or --connect")
    return config


def main(argv: Sequence[str] | None = None) -> int:
    config = parse_args(argv)
    setup_logging()
    try:
        trio.run(run_probe, config)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
