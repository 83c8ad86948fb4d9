import dataclasses
import os
import pathlib as pl
import shlex
import socket
import sys
import typing as tp

import pytest

from mahpastes_tests.instance_management import ports
from mahpastes_tests.instance_management import session as sess
from mahpastes_tests.instance_management import settings as sets
from mahpastes_tests.utils import configuration

pytest_plugins = ("pytester", "mahpastes_tests.pytest_plugins.app_instances")

FAKE_APP = pl.Path(__file__).parent / "mocks" / "fake_app.py"
REPO_ROOT = pl.Path(__file__).parent.parent


def get_free_base_port(count: int = 2) -> int:
    """Return a port such that `count` consecutive ports starting from it are free."""
    for __ in range(50):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((ports.LOOPBACK_HOST, 0))
            base_port = sock.getsockname()[1]
        if base_port + count > 65535:
            continue
        if all(ports.is_port_available(base_port + i) for i in range(count)):
            return base_port

    msg = f"Failed to find {count} consecutive free ports."
    raise RuntimeError(msg)


def get_fake_app_settings(
    tmp_path: pl.Path, *fake_app_args: str, **overrides: tp.Any
) -> sets.SessionSettings:
    """Return session settings for running the fake application."""
    settings = sets.SessionSettings.from_config(
        worker_count=2,
        base_port=get_free_base_port(),
        spawn_delay=0.05,
        descriptor_file=tmp_path / "e2e" / ".test-state.json",
        data_root=tmp_path / "data",
        executable=sys.executable,
        app_args=(str(FAKE_APP), "--port", "{port}", *fake_app_args),
        project_root=tmp_path,
        ready_timeout=15,
        ready_attempt_timeout=1,
        ready_interval=0.1,
        grace_period=0.5,
        debug=True,
        kill_stale=False,
    )
    return dataclasses.replace(settings, **overrides)


@pytest.fixture
def fake_app_settings_factory(tmp_path: pl.Path) -> tp.Callable[..., sets.SessionSettings]:
    """Return factory for settings of the fake application with extra arguments."""

    def _factory(*fake_app_args: str, **overrides: tp.Any) -> sets.SessionSettings:
        return get_fake_app_settings(tmp_path, *fake_app_args, **overrides)

    return _factory


@pytest.fixture
def fake_app_settings(tmp_path: pl.Path) -> sets.SessionSettings:
    return get_fake_app_settings(tmp_path)


@pytest.fixture
def coordinator_factory() -> tp.Generator[
    tp.Callable[[sets.SessionSettings], sess.SessionCoordinator], None, None
]:
    """Return factory for session coordinators, tearing all of them down at the end."""
    created: list[sess.SessionCoordinator] = []

    def _factory(settings: sets.SessionSettings) -> sess.SessionCoordinator:
        coordinator_obj = sess.SessionCoordinator(settings)
        created.append(coordinator_obj)
        return coordinator_obj

    yield _factory

    for coordinator_obj in created:
        coordinator_obj.teardown()


def make_fake_wails(dest_dir: pl.Path, *fake_app_args: str) -> pl.Path:
    """Create a `wails` executable that runs the fake application."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    wrapper = dest_dir / configuration.EXECUTABLE_NAME
    cmd = shlex.join((sys.executable, str(FAKE_APP), *fake_app_args))
    wrapper.write_text(f'#!/bin/sh\nexec {cmd} "$@"\n', encoding="utf-8")
    wrapper.chmod(0o755)
    return wrapper


@dataclasses.dataclass(frozen=True)
class FakeWailsEnv:
    """Locations used by a harness process started with the fake `wails` executable."""

    base_port: int
    harness_root: pl.Path
    data_root: pl.Path

    @property
    def descriptor_file(self) -> pl.Path:
        return self.harness_root / configuration.DESCRIPTOR_FILENAME


@pytest.fixture
def fake_wails_env_factory(
    tmp_path: pl.Path, monkeypatch: pytest.MonkeyPatch
) -> tp.Callable[..., FakeWailsEnv]:
    """Return factory that sets env variables for running the harness in a subprocess.

    The default executable is replaced with the fake application, all other locations point
    to the temporary directory.
    """

    def _factory(*fake_app_args: str, ready_timeout: float = 15) -> FakeWailsEnv:
        wrapper = make_fake_wails(tmp_path / "bin", *fake_app_args)
        fake_env = FakeWailsEnv(
            base_port=get_free_base_port(count=1),
            harness_root=tmp_path / "e2e",
            data_root=tmp_path / "data",
        )
        fake_env.data_root.mkdir(exist_ok=True)

        pythonpath = os.pathsep.join(filter(None, (str(REPO_ROOT), os.environ.get("PYTHONPATH"))))
        env_vars = {
            "APP_EXECUTABLE": str(wrapper),
            "APP_BASE_PORT": str(fake_env.base_port),
            "APP_PROJECT_ROOT": str(tmp_path),
            "HARNESS_ROOT": str(fake_env.harness_root),
            "APP_DATA_ROOT": str(fake_env.data_root),
            "WAILS_SPAWN_DELAY": "0",
            "APP_READY_TIMEOUT": str(ready_timeout),
            "PYTHONPATH": pythonpath,
        }
        for name, value in env_vars.items():
            monkeypatch.setenv(name, value)
        for name in ("KILL_STALE_INSTANCES", "APP_WORKERS", "PW_WORKERS"):
            monkeypatch.delenv(name, raising=False)

        return fake_env

    return _factory
