import socket
import time
import typing as tp

import pytest

from mahpastes_tests.instance_management import descriptor as desc
from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import ports
from mahpastes_tests.instance_management import session as sess
from mahpastes_tests.instance_management import settings as sets
from mahpastes_tests.utils import framework_log

SettingsFactory = tp.Callable[..., sets.SessionSettings]
CoordinatorFactory = tp.Callable[[sets.SessionSettings], sess.SessionCoordinator]


class TestSetup:
    def test_two_workers(
        self,
        fake_app_settings_factory: SettingsFactory,
        coordinator_factory: CoordinatorFactory,
    ):
        settings = fake_app_settings_factory(spawn_delay=0.3)
        coordinator = coordinator_factory(settings)
        base_port = settings.base_port

        start = time.monotonic()
        descriptor = coordinator.setup()
        elapsed = time.monotonic() - start

        assert elapsed >= settings.spawn_delay
        assert [i.worker_index for i in descriptor.instances] == [0, 1]
        assert [i.port for i in descriptor.instances] == [base_port, base_port + 1]
        assert [i.base_url for i in descriptor.instances] == [
            f"http://localhost:{base_port}",
            f"http://localhost:{base_port + 1}",
        ]
        data_dirs = {i.data_dir for i in descriptor.instances}
        assert len(data_dirs) == 2
        assert all(d.is_dir() for d in data_dirs)

        assert desc.load_descriptor(settings.descriptor_file) == descriptor
        assert coordinator.descriptor == descriptor

        coordinator.teardown()

        assert not settings.descriptor_file.exists()
        assert len(coordinator.registry) == 0
        assert not any(d.exists() for d in data_dirs)

    def test_port_occupied(
        self,
        fake_app_settings: sets.SessionSettings,
        coordinator_factory: CoordinatorFactory,
    ):
        """Setup fails on the first worker whose port is taken, and nothing is persisted."""
        coordinator = coordinator_factory(fake_app_settings)
        base_port = fake_app_settings.base_port

        # Leftover descriptor of an earlier, aborted run
        fake_app_settings.descriptor_file.parent.mkdir(parents=True)
        fake_app_settings.descriptor_file.write_text("{}", encoding="utf-8")

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((ports.LOOPBACK_HOST, base_port))
            sock.listen(1)

            with pytest.raises(errors.PortUnavailable) as excinfo:
                coordinator.setup()

        assert excinfo.value.port == base_port
        assert excinfo.value.worker_index == 0
        assert not fake_app_settings.descriptor_file.exists()
        assert len(coordinator.registry) == 0

        framework_log_content = framework_log.get_framework_log_path().read_text(encoding="utf-8")
        assert f"port {base_port} is not available" in framework_log_content

    def test_crashed_app(
        self,
        fake_app_settings_factory: SettingsFactory,
        coordinator_factory: CoordinatorFactory,
    ):
        """An application that exits right away never gets ready."""
        settings = fake_app_settings_factory("--crash", ready_timeout=1.5)
        coordinator = coordinator_factory(settings)

        start = time.monotonic()
        with pytest.raises(errors.ReadinessTimeout) as excinfo:
            coordinator.setup()
        elapsed = time.monotonic() - start

        assert elapsed >= settings.ready_timeout
        assert excinfo.value.worker_index == 0
        assert excinfo.value.last_error
        assert not settings.descriptor_file.exists()

        # The failed instance is left for the caller to clean up
        instance = coordinator.registry.get(0)
        assert instance is not None
        assert coordinator.registry.get(1) is None

        coordinator.teardown()
        assert len(coordinator.registry) == 0
        assert not instance.data_dir.exists()

    def test_setup_cleans_previous_instances(
        self,
        fake_app_settings: sets.SessionSettings,
        coordinator_factory: CoordinatorFactory,
    ):
        coordinator = coordinator_factory(fake_app_settings)
        first = coordinator.setup()
        second = coordinator.setup()

        assert len(coordinator.registry) == 2
        assert not any(i.data_dir.exists() for i in first.instances)
        assert all(i.data_dir.exists() for i in second.instances)
        assert desc.load_descriptor(fake_app_settings.descriptor_file) == second

    def test_default_base_port(
        self,
        fake_app_settings_factory: SettingsFactory,
        coordinator_factory: CoordinatorFactory,
    ):
        if not (ports.is_port_available(34115) and ports.is_port_available(34116)):
            pytest.skip("ports 34115 and 34116 are not available")

        settings = fake_app_settings_factory(base_port=34115)
        descriptor = coordinator_factory(settings).setup()

        assert [i.base_url for i in descriptor.instances] == [
            "http://localhost:34115",
            "http://localhost:34116",
        ]


def test_running(
    fake_app_settings: sets.SessionSettings,
    coordinator_factory: CoordinatorFactory,
):
    coordinator = coordinator_factory(fake_app_settings)

    with coordinator.running() as descriptor:
        assert fake_app_settings.descriptor_file.exists()
        assert len(descriptor.instances) == fake_app_settings.worker_count

    assert not fake_app_settings.descriptor_file.exists()
    assert len(coordinator.registry) == 0
    assert coordinator.descriptor is None


def test_teardown_without_setup(
    fake_app_settings: sets.SessionSettings,
    coordinator_factory: CoordinatorFactory,
):
    """Teardown is safe when nothing was started."""
    coordinator = coordinator_factory(fake_app_settings)
    coordinator.teardown()
    coordinator.teardown()
    assert not fake_app_settings.descriptor_file.exists()


def test_invalid_settings(fake_app_settings_factory: SettingsFactory):
    with pytest.raises(ValueError, match="Invalid number of workers"):
        fake_app_settings_factory(worker_count=0)
