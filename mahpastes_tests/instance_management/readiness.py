"""Waiting for application instances to answer HTTP requests."""

import logging
import time

import requests

from mahpastes_tests.instance_management import errors
from mahpastes_tests.utils import configuration
from mahpastes_tests.utils import http_client

LOGGER = logging.getLogger(__name__)


class ReadinessProber:
    """Poll an instance until it answers.

    Any HTTP response, regardless of status code, means the server is up. Only reachability of
    the process is checked, not health of the application.
    """

    def __init__(
        self,
        *,
        timeout: float = configuration.READY_TIMEOUT,
        attempt_timeout: float = configuration.READY_ATTEMPT_TIMEOUT,
        interval: float = configuration.READY_INTERVAL,
    ) -> None:
        self.timeout = timeout
        self.attempt_timeout = attempt_timeout
        self.interval = interval

    def probe(self, url: str) -> requests.Response:
        """Send a single liveness request, bounded by the per-attempt timeout."""
        return http_client.get_session().get(
            url, timeout=self.attempt_timeout, allow_redirects=False
        )

    def wait_until_ready(self, base_url: str, *, worker_index: int | None = None) -> None:
        """Block until the instance answers or the overall timeout elapses."""
        deadline = time.monotonic() + self.timeout
        last_error = ""
        attempt = 0

        while True:
            attempt += 1
            try:
                response = self.probe(base_url)
            except requests.RequestException as exc:
                last_error = str(exc) or exc.__class__.__name__
            else:
                LOGGER.debug(
                    f"{base_url} answered with status {response.status_code} "
                    f"after {attempt} attempt(s)"
                )
                return

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(self.interval, remaining))

        raise errors.ReadinessTimeout(
            url=base_url,
            timeout=self.timeout,
            last_error=last_error,
            worker_index=worker_index,
        )
