"""Stopping application instances.

Termination of a single instance is a strictly ordered sequence: graceful signal, bounded wait,
forced signal if the process is still alive, removal of the data directory and removal of
the registry entry. Independent instances are terminated in parallel.

The process leader is reaped only after the last signal to its group. Until then it stays
a zombie at worst, so the process group ID can't be reused by an unrelated process.
"""

import concurrent.futures
import contextlib
import enum
import logging
import os
import signal
import subprocess
import time

from mahpastes_tests.instance_management import instance as inst
from mahpastes_tests.instance_management import provisioning
from mahpastes_tests.instance_management import registry as reg
from mahpastes_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

# Seconds between checks whether a signalled process exited
EXIT_POLL_INTERVAL = 0.05


class TerminationOutcome(enum.StrEnum):
    ALREADY_TERMINATED = "already-terminated"
    TERMINATED_GRACEFULLY = "terminated-gracefully"
    TERMINATED_FORCEFULLY = "terminated-forcefully"


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    """Send signal to the process group of the process, or to the process alone.

    Must be called only while the process is not reaped, otherwise its PID may already belong
    to an unrelated process.
    """
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        # No such process group, the process was not started in its own session
        with contextlib.suppress(ProcessLookupError):
            os.kill(process.pid, sig)


class TerminationSequencer:
    """Stop registered instances and release their resources."""

    def __init__(
        self,
        registry: reg.InstanceRegistry,
        provisioner: provisioning.ResourceProvisioner,
        *,
        grace_period: float = configuration.GRACE_PERIOD,
    ) -> None:
        self.registry = registry
        self.provisioner = provisioner
        self.grace_period = grace_period

    def _wait_for_exit(self, process: subprocess.Popen) -> bool:
        """Wait for the process to exit, without reaping it."""
        deadline = time.monotonic() + self.grace_period
        while inst.get_exit_status(process) is None:
            if time.monotonic() >= deadline:
                return False
            time.sleep(EXIT_POLL_INTERVAL)
        return True

    def _stop_process(self, instance: inst.Instance) -> TerminationOutcome:
        process = instance.process
        if instance.is_exited():
            # Kill leftover members of the process group
            _signal_group(process, signal.SIGKILL)
            process.wait()
            return TerminationOutcome.ALREADY_TERMINATED

        _signal_group(process, signal.SIGTERM)
        if self._wait_for_exit(process):
            _signal_group(process, signal.SIGKILL)
            process.wait()
            return TerminationOutcome.TERMINATED_GRACEFULLY

        LOGGER.warning(
            f"Worker {instance.worker_index}: process PID {process.pid} ignored SIGTERM, "
            "sending SIGKILL"
        )
        _signal_group(process, signal.SIGKILL)
        process.wait()
        return TerminationOutcome.TERMINATED_FORCEFULLY

    def terminate(self, worker_index: int) -> TerminationOutcome:
        """Terminate the instance of the given worker.

        Terminating a worker without registered instance is a no-op.
        """
        instance = self.registry.get(worker_index)
        if instance is None:
            return TerminationOutcome.ALREADY_TERMINATED

        instance.state = inst.InstanceState.TERMINATING
        try:
            outcome = self._stop_process(instance)
        except OSError as exc:
            LOGGER.warning(f"Worker {worker_index}: failed to stop process: {exc}")
            outcome = TerminationOutcome.ALREADY_TERMINATED
        finally:
            instance.state = inst.InstanceState.TERMINATED
            self.provisioner.cleanup(instance.data_dir)
            self.registry.remove(worker_index)

        LOGGER.debug(f"Worker {worker_index}: {outcome}")
        return outcome

    def terminate_all(self) -> dict[int, TerminationOutcome]:
        """Terminate all registered instances in parallel.

        Failure to terminate one instance doesn't prevent termination of the others. Errors are
        logged, never raised.
        """
        worker_indices = self.registry.all_indices()
        if not worker_indices:
            return {}

        outcomes: dict[int, TerminationOutcome] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(worker_indices)) as executor:
            futures = {executor.submit(self.terminate, idx): idx for idx in worker_indices}
            for future in concurrent.futures.as_completed(futures):
                idx = futures[future]
                try:
                    outcomes[idx] = future.result()
                except Exception:
                    LOGGER.exception(f"Worker {idx}: failed to terminate instance")
                    self.registry.remove(idx)

        return outcomes
