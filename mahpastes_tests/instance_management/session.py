"""Session coordination - setup and teardown of all instances of a test run."""

import contextlib
import datetime
import logging
import pathlib as pl
import time
import typing as tp

from mahpastes_tests.instance_management import descriptor as desc
from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import instance as inst
from mahpastes_tests.instance_management import ports
from mahpastes_tests.instance_management import provisioning
from mahpastes_tests.instance_management import readiness
from mahpastes_tests.instance_management import registry as reg
from mahpastes_tests.instance_management import settings as sets
from mahpastes_tests.instance_management import spawner
from mahpastes_tests.instance_management import stale_processes
from mahpastes_tests.instance_management import termination
from mahpastes_tests.utils import framework_log

LOGGER = logging.getLogger(__name__)


class SessionCoordinator:
    """Drive setup and teardown of application instances for one test session.

    The coordinator owns the instance registry, so independent coordinators never share
    instances.
    """

    def __init__(self, settings: sets.SessionSettings | None = None) -> None:
        self.settings = settings or sets.SessionSettings.from_config()
        self.registry = reg.InstanceRegistry()
        self.allocator = ports.PortAllocator(self.settings.base_port)
        self.provisioner = provisioning.ResourceProvisioner(
            self.settings.data_root, prefix=self.settings.data_dir_prefix
        )
        self.spawner = spawner.InstanceSpawner(
            self.registry,
            executable=self.settings.executable,
            args=self.settings.app_args,
            cwd=self.settings.project_root,
            data_dir_env=self.settings.data_dir_env,
            debug=self.settings.debug,
        )
        self.prober = readiness.ReadinessProber(
            timeout=self.settings.ready_timeout,
            attempt_timeout=self.settings.ready_attempt_timeout,
            interval=self.settings.ready_interval,
        )
        self.terminator = termination.TerminationSequencer(
            self.registry, self.provisioner, grace_period=self.settings.grace_period
        )
        self.descriptor: desc.SessionDescriptor | None = None

    @property
    def descriptor_file(self) -> pl.Path:
        return self.settings.descriptor_file

    def get_ports(self) -> list[int]:
        return [
            ports.get_candidate_port(base_port=self.settings.base_port, worker_index=i)
            for i in range(self.settings.worker_count)
        ]

    def launch_instance(self, worker_index: int) -> inst.Instance:
        """Start a single instance and wait until it is ready.

        On failure the instance, if it was spawned, stays registered so it can be terminated.
        """
        port = self.allocator.allocate(worker_index)
        data_dir = self.provisioner.provision(worker_index)
        try:
            instance = self.spawner.spawn(worker_index=worker_index, port=port, data_dir=data_dir)
        except BaseException:
            # Data dir of a registered instance is removed on its termination
            if worker_index not in self.registry:
                self.provisioner.cleanup(data_dir)
            raise

        self.prober.wait_until_ready(instance.base_url, worker_index=worker_index)
        instance.mark_ready()
        return instance

    def setup(self) -> desc.SessionDescriptor:
        """Start all instances, one after another, and persist the session descriptor.

        The first failure aborts the setup. Instances started so far stay registered and it is
        up to the caller to run `teardown`.
        """
        started_at = datetime.datetime.now(tz=datetime.UTC)
        worker_count = self.settings.worker_count

        # Clean up leftovers of a previous run
        self.terminator.terminate_all()
        desc.remove_descriptor(self.descriptor_file)
        if self.settings.kill_stale:
            stale_processes.kill_stale_listeners(self.get_ports(), log_func=LOGGER.warning)

        LOGGER.info(f"Starting {worker_count} application instance(s)")
        instances: list[inst.InstanceInfo] = []
        for worker_index in range(worker_count):
            try:
                instance = self.launch_instance(worker_index)
            except errors.InstanceSetupError as err:
                LOGGER.error(f"Worker {worker_index}: Failed to start - {err}")  # noqa: TRY400
                framework_log.log_setup_failure(worker_index=worker_index, error=err)
                raise

            LOGGER.info(
                f"Worker {worker_index}: {instance.base_url} (data: {instance.data_dir})"
            )
            instances.append(instance.to_info())

            if worker_index < worker_count - 1 and self.settings.spawn_delay:
                time.sleep(self.settings.spawn_delay)

        descriptor = desc.SessionDescriptor(instances=tuple(instances), started_at=started_at)
        desc.write_descriptor(descriptor, self.descriptor_file)
        self.descriptor = descriptor
        LOGGER.info(f"All instances ready, session descriptor: '{self.descriptor_file}'")
        return descriptor

    def teardown(self) -> None:
        """Stop all instances and remove the session descriptor.

        Errors are logged, never raised.
        """
        LOGGER.info("Stopping application instances")
        try:
            outcomes = self.terminator.terminate_all()
        except Exception:
            LOGGER.exception("Failed to terminate application instances")
        else:
            for worker_index, outcome in sorted(outcomes.items()):
                LOGGER.debug(f"Worker {worker_index}: {outcome}")
        desc.remove_descriptor(self.descriptor_file)
        self.descriptor = None

    @contextlib.contextmanager
    def running(self) -> tp.Iterator[desc.SessionDescriptor]:
        """Run `setup`, yield the descriptor and always run `teardown` afterwards."""
        try:
            yield self.setup()
        finally:
            self.teardown()
