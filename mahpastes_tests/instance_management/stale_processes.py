"""Cleanup of processes left over from a previous, interrupted session."""

import logging
import typing as tp

import psutil

LOGGER = logging.getLogger(__name__)


def get_listening_pids(ports: tp.Iterable[int]) -> dict[int, int]:
    """Return mapping of PID to port for processes listening on any of the ports."""
    ports_set = set(ports)
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied as exc:
        LOGGER.error(f"Failed to list network connections: {exc}")  # noqa: TRY400
        return {}

    found: dict[int, int] = {}
    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.pid is None:
            continue
        if conn.laddr.port in ports_set:
            found[conn.pid] = conn.laddr.port
    return found


def kill_stale_listeners(
    ports: tp.Iterable[int],
    *,
    log_func: tp.Callable[[str], None] = LOGGER.info,
    timeout: float = 5,
) -> list[int]:
    """Attempt to kill all processes listening on the given ports.

    Return PIDs of the processes that were signalled.
    """
    procs = []
    for pid, port in get_listening_pids(ports).items():
        try:
            proc = psutil.Process(pid)
            cmdline = " ".join(proc.cmdline())
            log_func(f"Killing leftover process on port {port}: PID {pid}; cmdline: {cmdline}")
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
            log_func(f"Failed to kill leftover process PID {pid}: {exc}")
            continue
        procs.append(proc)

    __, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        log_func(f"Leftover process PID {proc.pid} still running, sending SIGKILL")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    return [p.pid for p in procs]
