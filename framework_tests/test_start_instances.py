import pathlib as pl
import signal
import subprocess
import sys
import time
import typing as tp

import psutil
import pytest

from mahpastes_tests.instance_management import descriptor as desc


def _is_process_gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def _wait_for(predicate: tp.Callable[[], bool], timeout: float = 30) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            msg = f"Condition not met in {timeout} seconds"
            raise TimeoutError(msg)
        time.sleep(0.1)


def _get_app_pid(data_root: pl.Path) -> int:
    started_files = list(data_root.glob("*/.started"))
    assert len(started_files) == 1
    return int(started_files[0].read_text().strip())


@pytest.fixture
def run_cli() -> tp.Generator[tp.Callable[..., subprocess.Popen], None, None]:
    """Return function that starts the CLI with the fake application for a single worker."""
    procs: list[subprocess.Popen] = []

    def _run(fake_env: tp.Any) -> subprocess.Popen:
        proc = subprocess.Popen(
            [
                sys.executable,
                "-m",
                "mahpastes_tests.start_instances",
                "--workers",
                "1",
                "--base-port",
                str(fake_env.base_port),
                "--harness-root",
                str(fake_env.harness_root),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        procs.append(proc)
        return proc

    yield _run

    for proc in procs:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_failed_setup(
    fake_wails_env_factory: tp.Callable[..., tp.Any],
    run_cli: tp.Callable[..., subprocess.Popen],
):
    """Nothing is left behind when an instance fails to start."""
    fake_env = fake_wails_env_factory("--crash", ready_timeout=1)

    proc = run_cli(fake_env)
    __, stderr = proc.communicate(timeout=60)

    assert proc.returncode == 1
    assert "Failed to start application instances" in stderr
    assert not fake_env.descriptor_file.exists()
    assert not list(fake_env.data_root.iterdir())


def test_interrupted_setup(
    fake_wails_env_factory: tp.Callable[..., tp.Any],
    run_cli: tp.Callable[..., subprocess.Popen],
):
    """Ctrl+C while waiting for readiness stops the already spawned application."""
    fake_env = fake_wails_env_factory("--hang", ready_timeout=60)

    proc = run_cli(fake_env)
    _wait_for(lambda: bool(list(fake_env.data_root.glob("*/.started"))))
    app_pid = _get_app_pid(fake_env.data_root)

    proc.send_signal(signal.SIGINT)
    __, stderr = proc.communicate(timeout=30)

    assert proc.returncode == 1
    assert "Interrupted before all application instances were ready" in stderr
    assert _is_process_gone(app_pid)
    assert not fake_env.descriptor_file.exists()
    assert not list(fake_env.data_root.iterdir())


def test_stop_with_sigterm(
    fake_wails_env_factory: tp.Callable[..., tp.Any],
    run_cli: tp.Callable[..., subprocess.Popen],
):
    fake_env = fake_wails_env_factory()

    proc = run_cli(fake_env)
    _wait_for(fake_env.descriptor_file.exists)
    descriptor = desc.load_descriptor(fake_env.descriptor_file)
    assert descriptor.get_instance(0).port == fake_env.base_port
    app_pid = _get_app_pid(fake_env.data_root)

    proc.send_signal(signal.SIGTERM)
    proc.communicate(timeout=30)

    assert proc.returncode == 0
    assert _is_process_gone(app_pid)
    assert not fake_env.descriptor_file.exists()
    assert not list(fake_env.data_root.iterdir())
