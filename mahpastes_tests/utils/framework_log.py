import functools
import logging
import pathlib as pl
import time

from mahpastes_tests.utils import temptools

FRAMEWORK_LOG_NAME = "framework.log"


@functools.cache
def get_framework_log_path() -> pl.Path:
    return temptools.get_basetemp() / FRAMEWORK_LOG_NAME


@functools.cache
def framework_logger() -> logging.Logger:
    """Get logger for the `framework.log` file.

    Failures of the harness itself, e.g. an application instance that failed to start, are
    recorded there, separately from the output of tests.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    handler = logging.FileHandler(get_framework_log_path())
    handler.setFormatter(UTCFormatter("%(asctime)s %(levelname)s %(message)s"))

    logger = logging.getLogger("mahpastes_tests.framework")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    return logger


def log_setup_failure(*, worker_index: int, error: Exception) -> None:
    """Record failure to start the instance of the given worker."""
    framework_logger().error(
        "Failed to start application instance for worker %s (%s):\n%s",
        worker_index,
        type(error).__name__,
        error,
    )
