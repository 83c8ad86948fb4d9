"""pytest plugin that runs one application instance per test worker.

Enable with `-p mahpastes_tests.pytest_plugins.app_instances --app-instances`. The instances are
started by the controller process (the only process when `pytest-xdist` is not used) before
collection and stopped at the end of the session. Tests get the instance of their worker through
the `app_instance` and `app_base_url` fixtures.
"""

import logging
import re
import typing as tp

import pytest

from mahpastes_tests.instance_management import descriptor as desc
from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import instance as inst
from mahpastes_tests.instance_management import session as sess
from mahpastes_tests.instance_management import settings as sets
from mahpastes_tests.utils import helpers
from mahpastes_tests.utils import http_client

LOGGER = logging.getLogger(__name__)

COORDINATOR_KEY = pytest.StashKey[sess.SessionCoordinator]()


def pytest_addoption(parser: tp.Any) -> None:
    group = parser.getgroup("app-instances", "application instances")
    group.addoption(
        "--app-instances",
        action="store_true",
        default=False,
        help="Start an application instance for each test worker",
    )
    group.addoption(
        "--app-workers",
        action="store",
        type=int,
        default=0,
        help="Number of application instances (default: number of xdist workers)",
    )
    group.addoption(
        "--app-base-port",
        action="store",
        type=int,
        default=0,
        help="Port of the first application instance",
    )


def is_controller(config: pytest.Config) -> bool:
    """Check that this is not an xdist worker process."""
    return not hasattr(config, "workerinput")


def get_worker_index(worker_id: str) -> int:
    """Return worker index for the xdist worker ID (`gw3` -> 3, `master` -> 0)."""
    if worker_id == "master":
        return 0
    match = re.fullmatch(r"gw(\d+)", worker_id)
    if not match:
        msg = f"Unexpected xdist worker ID: {worker_id}"
        raise ValueError(msg)
    return int(match.group(1))


def get_worker_count(config: pytest.Config) -> int:
    worker_count = config.getoption("app_workers")
    if worker_count:
        return int(worker_count)

    numprocesses = config.getoption("numprocesses", default=None)
    if isinstance(numprocesses, int) and numprocesses > 0:
        return numprocesses

    return sets.SessionSettings.from_config().worker_count


def get_session_settings(config: pytest.Config) -> sets.SessionSettings:
    overrides: dict[str, tp.Any] = {"worker_count": get_worker_count(config)}
    base_port = config.getoption("app_base_port")
    if base_port:
        overrides["base_port"] = base_port
    return sets.SessionSettings.from_config(**overrides)


def pytest_sessionstart(session: pytest.Session) -> None:
    config = session.config
    if not config.getoption("app_instances") or not is_controller(config):
        return

    coordinator = sess.SessionCoordinator(get_session_settings(config))
    config.stash[COORDINATOR_KEY] = coordinator
    try:
        coordinator.setup()
    except BaseException as exc:
        # `pytest_sessionfinish` is not called when session start fails
        with helpers.ignore_interrupt():
            coordinator.teardown()
        if isinstance(exc, errors.HarnessError):
            pytest.exit(reason=f"Failed to start application instances: {exc}", returncode=1)
        raise


def pytest_sessionfinish(session: pytest.Session) -> None:
    coordinator = session.config.stash.get(COORDINATOR_KEY, None)
    if coordinator is None:
        return

    with helpers.ignore_interrupt():
        coordinator.teardown()
    http_client.close_session()


@pytest.fixture(scope="session")
def app_instance(request: pytest.FixtureRequest, worker_id: str) -> inst.InstanceInfo:
    """Return the application instance of the current test worker."""
    config = request.config
    if not config.getoption("app_instances"):
        pytest.skip("application instances are not enabled, use `--app-instances`")

    worker_index = get_worker_index(worker_id)
    descriptor = desc.load_descriptor(get_session_settings(config).descriptor_file)
    instance_info = descriptor.get_instance(worker_index)
    if instance_info is None:
        pytest.fail(f"No application instance for worker {worker_index}")
    return instance_info


@pytest.fixture(scope="session")
def app_base_url(app_instance: inst.InstanceInfo) -> str:
    return app_instance.base_url
