import dataclasses
import pathlib as pl

from mahpastes_tests.utils import configuration


@dataclasses.dataclass(frozen=True)
class SessionSettings:
    """Settings of a single test session."""

    worker_count: int = configuration.WORKERS_COUNT
    base_port: int = configuration.BASE_PORT
    # Delay between spawning instances, in seconds
    spawn_delay: float = configuration.SPAWN_DELAY / 1000
    descriptor_file: pl.Path = configuration.HARNESS_ROOT / configuration.DESCRIPTOR_FILENAME
    data_root: pl.Path = configuration.DATA_ROOT
    data_dir_prefix: str = configuration.DATA_DIR_PREFIX
    data_dir_env: str = configuration.DATA_DIR_ENV
    # Empty means search `configuration.EXECUTABLE_CANDIDATES`
    executable: str = ""
    app_args: tuple[str, ...] = configuration.APP_ARGS
    project_root: pl.Path = configuration.PROJECT_ROOT
    ready_timeout: float = configuration.READY_TIMEOUT
    ready_attempt_timeout: float = configuration.READY_ATTEMPT_TIMEOUT
    ready_interval: float = configuration.READY_INTERVAL
    grace_period: float = configuration.GRACE_PERIOD
    debug: bool = configuration.DEBUG_APP_OUTPUT
    kill_stale: bool = configuration.KILL_STALE_INSTANCES

    @classmethod
    def from_config(cls, **overrides: object) -> "SessionSettings":
        """Return settings based on configuration, with optional overrides."""
        return dataclasses.replace(cls(), **overrides)

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            msg = f"Invalid number of workers: {self.worker_count}"
            raise ValueError(msg)
        if self.spawn_delay < 0:
            msg = f"Invalid spawn delay: {self.spawn_delay}"
            raise ValueError(msg)
