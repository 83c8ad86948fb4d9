"""Application instance data model."""

import dataclasses
import enum
import os
import pathlib as pl
import subprocess
import threading

from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import ports
from mahpastes_tests.utils import configuration

LOCAL_HOST = "localhost"


class InstanceState(enum.StrEnum):
    SPAWNING = "spawning"
    READY = "ready"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


def get_base_url(port: int, *, host: str = LOCAL_HOST) -> str:
    """Return address of an instance listening on `port`."""
    return f"http://{host}:{port}"


def get_base_url_for_worker(
    worker_index: int, *, base_port: int = configuration.BASE_PORT
) -> str:
    """Return address of the worker instance without reading the session descriptor."""
    return get_base_url(ports.get_candidate_port(base_port=base_port, worker_index=worker_index))


def get_exit_status(process: subprocess.Popen, *, block: bool = False) -> int | None:
    """Return exit status of the process, or None if it is still running.

    The process is not reaped. It stays a zombie until `process.wait()` is called, so its PID
    and process group ID can't be reused by another process in the meantime.
    """
    if process.returncode is not None:
        return process.returncode

    options = os.WEXITED | os.WNOWAIT
    if not block:
        options |= os.WNOHANG
    try:
        result = os.waitid(os.P_PID, process.pid, options)
    except ChildProcessError:
        # Reaped in the meantime, `wait` returns the recorded status
        return process.wait()

    if result is None:
        return None
    if result.si_code == os.CLD_EXITED:
        return result.si_status
    # Killed by signal, same convention as `Popen.returncode`
    return -result.si_status


@dataclasses.dataclass(frozen=True, order=True)
class InstanceInfo:
    """Public record of an instance, as handed over to tests."""

    worker_index: int
    port: int
    data_dir: pl.Path
    base_url: str


@dataclasses.dataclass
class Instance:
    """One running copy of the application.

    The `process` handle is owned by the registry entry of the instance; only the termination
    sequencer signals or waits on it.
    """

    worker_index: int
    port: int
    data_dir: pl.Path
    base_url: str
    process: subprocess.Popen = dataclasses.field(repr=False, compare=False)
    state: InstanceState = InstanceState.SPAWNING
    process_errors: list[errors.ProcessError] = dataclasses.field(
        default_factory=list, repr=False
    )
    relay_threads: list[threading.Thread] = dataclasses.field(
        default_factory=list, repr=False, compare=False
    )

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_exited(self) -> bool:
        return get_exit_status(self.process) is not None

    def mark_ready(self) -> None:
        if self.state == InstanceState.SPAWNING:
            self.state = InstanceState.READY

    def to_info(self) -> InstanceInfo:
        return InstanceInfo(
            worker_index=self.worker_index,
            port=self.port,
            data_dir=self.data_dir,
            base_url=self.base_url,
        )
