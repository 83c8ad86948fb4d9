#!/usr/bin/env python3
"""Start application instances for running end-to-end tests manually.

For settings it uses the same env variables as when running the tests. The instances keep
running until the script is interrupted.
"""

import argparse
import logging
import pathlib as pl
import signal
import sys
import time
import typing as tp

from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import session as sess
from mahpastes_tests.instance_management import settings as sets
from mahpastes_tests.utils import configuration
from mahpastes_tests.utils import helpers

LOGGER = logging.getLogger(__name__)


def get_args() -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])
    parser.add_argument(
        "-w",
        "--workers",
        type=int,
        default=configuration.WORKERS_COUNT,
        help=f"Number of application instances (default: {configuration.WORKERS_COUNT})",
    )
    parser.add_argument(
        "-p",
        "--base-port",
        type=int,
        default=configuration.BASE_PORT,
        help=f"Port of the first application instance (default: {configuration.BASE_PORT})",
    )
    parser.add_argument(
        "-d",
        "--harness-root",
        default=str(configuration.HARNESS_ROOT),
        help="Path to directory for the session descriptor",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log output of the application processes",
    )
    return parser.parse_args()


def _interrupt(signum: int, frame: tp.Any) -> None:  # noqa: ARG001
    """Turn SIGTERM into KeyboardInterrupt, so it is handled the same way as Ctrl+C."""
    LOGGER.info(f"Received signal {signal.Signals(signum).name}")
    raise KeyboardInterrupt


def main() -> int:
    logging.basicConfig(format="%(levelname)s:%(message)s", level=logging.INFO)
    args = get_args()

    try:
        settings = sets.SessionSettings.from_config(
            worker_count=args.workers,
            base_port=args.base_port,
            descriptor_file=pl.Path(args.harness_root).expanduser().resolve()
            / configuration.DESCRIPTOR_FILENAME,
            debug=args.debug or configuration.DEBUG_APP_OUTPUT,
        )
    except ValueError as exc:
        LOGGER.error(str(exc))  # noqa: TRY400
        return 1

    coordinator = sess.SessionCoordinator(settings)
    orig_sigterm = signal.signal(signal.SIGTERM, _interrupt)
    retval = 1
    try:
        coordinator.setup()
        retval = 0
        LOGGER.info("Press Ctrl+C to stop the instances")
        while True:
            time.sleep(1)
    except errors.HarnessError as err:
        LOGGER.error(f"Failed to start application instances: {err}")  # noqa: TRY400
    except KeyboardInterrupt:
        if retval:
            LOGGER.error("Interrupted before all application instances were ready")
    finally:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        with helpers.ignore_interrupt():
            coordinator.teardown()
        signal.signal(signal.SIGTERM, orig_sigterm)

    return retval


if __name__ == "__main__":
    sys.exit(main())
