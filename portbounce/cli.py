"""
Command-line entry point: portbounce LISTEN_PORT TARGET_PORT
"""

import argparse
import logging
import signal
import sys

from rich.console import Console

from .config import BounceConfig, parse_port
from .dispatcher import PortBouncer
from .errors import ConfigError, StartupError
from .log import render_banner, setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


class BounceArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_FAILURE, f"{self.prog}: error: {message}\n")


def _port_arg(text):
    try:
        return parse_port(text)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _timeout_arg(text):
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = BounceArgumentParser(
        prog="portbounce",
        description="Redirect TCP traffic arriving on one port to another port on this host.",
    )
    parser.add_argument("listen_port", type=_port_arg, help="Port to accept connections on")
    parser.add_argument("target_port", type=_port_arg, help="Local port to forward connections to")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug detail")
    parser.add_argument(
        "--idle-timeout",
        type=_timeout_arg,
        default=None,
        metavar="SECONDS",
        help="Close a connection after this long without traffic (default: never)",
    )
    return parser


def _install_signal_handlers(bouncer):
    def shutdown(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        bouncer.stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, shutdown)
    return previous


def _restore_signal_handlers(previous):
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def main(argv=None) -> int:
    """
    Parse arguments, start the bouncer and serve until stopped.

    Returns:
        int: Process exit status
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = BounceConfig(
            listen_port=args.listen_port,
            target_port=args.target_port,
            idle_timeout=args.idle_timeout,
        )
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    bouncer = PortBouncer(config)
    try:
        address = bouncer.bind()
    except StartupError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    Console(stderr=True).print(
        render_banner(address, config.target_host, config.target_port, config.idle_timeout)
    )

    previous = _install_signal_handlers(bouncer)
    try:
        bouncer.serve_forever()
    except StartupError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    finally:
        _restore_signal_handlers(previous)

    logger.info("Goodbye 👋")
    return EXIT_OK


def run():
    sys.exit(main())
