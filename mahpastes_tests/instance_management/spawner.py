"""Launching application processes."""

import logging
import os
import pathlib as pl
import shutil
import subprocess
import threading
import typing as tp

from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import instance as inst
from mahpastes_tests.instance_management import registry as reg
from mahpastes_tests.utils import configuration

LOGGER = logging.getLogger(__name__)


def find_executable(
    candidates: tp.Sequence[str] = configuration.EXECUTABLE_CANDIDATES,
    *,
    fallback: str = configuration.EXECUTABLE_NAME,
) -> str:
    """Return the first candidate executable that exists.

    Bare names are looked up on `PATH`, paths are checked directly. When nothing is found,
    the bare `fallback` name is returned and any error is deferred to the process launch.
    """
    for candidate in candidates:
        if os.sep in candidate or candidate.startswith("~"):
            cpath = pl.Path(candidate).expanduser()
            if cpath.exists():
                return str(cpath)
        elif shutil.which(candidate):
            return candidate
    return fallback


def get_instance_env(
    data_dir: pl.Path, *, data_dir_env: str = configuration.DATA_DIR_ENV
) -> dict[str, str]:
    """Return environment for the application process."""
    env = os.environ.copy()
    env[data_dir_env] = str(data_dir)
    env["PATH"] = f"{env.get('PATH', '')}{os.pathsep}{configuration.GO_BIN_DIR}"
    return env


def _relay_output(stream: tp.IO[bytes], *, worker_index: int, level: int, debug: bool) -> None:
    """Read the stream until EOF, logging lines if `debug` is set."""
    with stream:
        for line in iter(stream.readline, b""):
            if not debug:
                continue
            line_str = line.decode(errors="replace").rstrip()
            LOGGER.log(level, f"[Worker {worker_index}] {line_str}")


def _watch_exit(instance: inst.Instance) -> None:
    """Record a `ProcessError` when the process exits on its own.

    The process is left unreaped for the termination sequencer.
    """
    returncode = inst.get_exit_status(instance.process, block=True)
    if instance.state in (inst.InstanceState.TERMINATING, inst.InstanceState.TERMINATED):
        return

    err = errors.ProcessError(worker_index=instance.worker_index, returncode=returncode)
    instance.process_errors.append(err)
    LOGGER.error(f"[Worker {instance.worker_index}] Process error: {err}")


class InstanceSpawner:
    """Start application processes and register them."""

    def __init__(
        self,
        registry: reg.InstanceRegistry,
        *,
        executable: str = "",
        args: tp.Sequence[str] = configuration.APP_ARGS,
        cwd: pl.Path = configuration.PROJECT_ROOT,
        data_dir_env: str = configuration.DATA_DIR_ENV,
        debug: bool = configuration.DEBUG_APP_OUTPUT,
    ) -> None:
        self.registry = registry
        self.executable = executable or find_executable()
        self.args = tuple(args)
        self.cwd = cwd
        self.data_dir_env = data_dir_env
        self.debug = debug

    def get_command(self, port: int) -> list[str]:
        return [self.executable, *(a.format(port=port) for a in self.args)]

    def spawn(self, worker_index: int, port: int, data_dir: pl.Path) -> inst.Instance:
        """Launch the application and register the new instance.

        The instance is registered right away, in the `spawning` state, so it can be cleaned up
        even when it never gets ready.
        """
        cmd = self.get_command(port)
        LOGGER.debug(f"Worker {worker_index}: running `{' '.join(cmd)}`")

        try:
            # New session, so the whole process group can be signalled on termination
            process = subprocess.Popen(
                cmd,
                cwd=self.cwd,
                env=get_instance_env(data_dir, data_dir_env=self.data_dir_env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise errors.SpawnFailed(
                f"failed to run `{' '.join(cmd)}`: {exc}", worker_index=worker_index
            ) from exc

        instance = inst.Instance(
            worker_index=worker_index,
            port=port,
            data_dir=data_dir,
            base_url=inst.get_base_url(port),
            process=process,
        )
        self._start_relays(instance)
        self.registry.register(worker_index, instance)
        LOGGER.debug(f"Worker {worker_index}: spawned process PID {process.pid}")
        return instance

    def _start_relays(self, instance: inst.Instance) -> None:
        process = instance.process
        assert process.stdout is not None and process.stderr is not None

        stdout_relay = threading.Thread(
            target=_relay_output,
            args=(process.stdout,),
            kwargs={
                "worker_index": instance.worker_index,
                "level": logging.INFO,
                "debug": self.debug,
            },
            name=f"relay-stdout-{instance.worker_index}",
            daemon=True,
        )
        stderr_relay = threading.Thread(
            target=_relay_output,
            args=(process.stderr,),
            kwargs={
                "worker_index": instance.worker_index,
                "level": logging.WARNING,
                "debug": self.debug,
            },
            name=f"relay-stderr-{instance.worker_index}",
            daemon=True,
        )
        exit_watcher = threading.Thread(
            target=_watch_exit,
            args=(instance,),
            name=f"exit-watcher-{instance.worker_index}",
            daemon=True,
        )

        instance.relay_threads.extend((stdout_relay, stderr_relay, exit_watcher))
        for thread in instance.relay_threads:
            thread.start()
