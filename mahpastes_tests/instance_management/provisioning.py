"""Private data directories of application instances."""

import logging
import pathlib as pl
import shutil
import time

from mahpastes_tests.instance_management import errors
from mahpastes_tests.utils import configuration

LOGGER = logging.getLogger(__name__)


class ResourceProvisioner:
    """Create and remove per-instance data directories."""

    def __init__(
        self,
        root: pl.Path = configuration.DATA_ROOT,
        *,
        prefix: str = configuration.DATA_DIR_PREFIX,
    ) -> None:
        self.root = pl.Path(root)
        self.prefix = prefix

    def get_dir_name(self, worker_index: int) -> str:
        # Nanosecond timestamp keeps names unique even across quickly repeated runs
        return f"{self.prefix}-{worker_index}-{time.time_ns()}"

    def provision(self, worker_index: int) -> pl.Path:
        """Create a fresh data directory for the worker."""
        data_dir = self.root / self.get_dir_name(worker_index)
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise errors.ProvisioningFailed(
                f"cannot create data directory '{data_dir}': {exc}", worker_index=worker_index
            ) from exc
        LOGGER.debug(f"Worker {worker_index}: created data directory '{data_dir}'")
        return data_dir

    def cleanup(self, data_dir: pl.Path) -> None:
        """Remove the data directory.

        Errors are logged and ignored, the cleanup must never interrupt the teardown.
        """
        try:
            shutil.rmtree(data_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOGGER.warning(f"Failed to remove data directory '{data_dir}': {exc}")
        else:
            LOGGER.debug(f"Removed data directory '{data_dir}'")
