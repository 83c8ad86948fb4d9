"""Session descriptor - manifest of all instances of a test session.

The descriptor is written once, after all instances are ready, and read by test workers.
Example content:

    {
      "instances": [
        {"workerIndex": 0, "port": 34115, "dataDir": "/tmp/...", "baseURL": "http://..."}
      ],
      "startedAt": "2026-10-19T08:15:00.123Z"
    }
"""

import dataclasses
import datetime
import json
import logging
import pathlib as pl
import typing as tp

from filelock import FileLock

from mahpastes_tests.instance_management import errors
from mahpastes_tests.instance_management import instance as inst
from mahpastes_tests.utils import configuration
from mahpastes_tests.utils import helpers
from mahpastes_tests.utils import types as ttypes

LOGGER = logging.getLogger(__name__)

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)


def get_descriptor_path(harness_root: ttypes.FileType = configuration.HARNESS_ROOT) -> pl.Path:
    return pl.Path(harness_root) / configuration.DESCRIPTOR_FILENAME


def _get_lock(descriptor_file: pl.Path) -> FileLock:
    return FileLock(f"{descriptor_file}.lock")


def format_timestamp(timestamp: datetime.datetime) -> str:
    """Return ISO-8601 timestamp in UTC with millisecond precision."""
    utc_ts = timestamp.astimezone(datetime.UTC)
    return utc_ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclasses.dataclass(frozen=True)
class SessionDescriptor:
    instances: tuple[inst.InstanceInfo, ...]
    started_at: datetime.datetime

    def get_instance(self, worker_index: int) -> inst.InstanceInfo | None:
        for instance_info in self.instances:
            if instance_info.worker_index == worker_index:
                return instance_info
        return None

    def to_dict(self) -> dict[str, tp.Any]:
        return {
            "instances": [
                {
                    "workerIndex": i.worker_index,
                    "port": i.port,
                    "dataDir": str(i.data_dir),
                    "baseURL": i.base_url,
                }
                for i in self.instances
            ],
            "startedAt": format_timestamp(self.started_at),
        }

    @classmethod
    def from_dict(cls, content: tp.Any) -> "SessionDescriptor":
        """Create descriptor from loaded JSON, checking its structure."""
        if not isinstance(content, dict):
            msg = "Session descriptor is not a JSON object."
            raise errors.DescriptorError(msg)

        records = content.get("instances")
        if not isinstance(records, list):
            msg = "Session descriptor has no list of instances."
            raise errors.DescriptorError(msg)

        instances = []
        for rec in records:
            try:
                worker_index = rec["workerIndex"]
                port = rec["port"]
                data_dir = rec["dataDir"]
                base_url = rec["baseURL"]
            except (KeyError, TypeError) as exc:
                msg = f"Invalid instance record in session descriptor: {rec}"
                raise errors.DescriptorError(msg) from exc
            if not (
                isinstance(worker_index, int)
                and isinstance(port, int)
                and isinstance(data_dir, str)
                and isinstance(base_url, str)
            ):
                msg = f"Invalid instance record in session descriptor: {rec}"
                raise errors.DescriptorError(msg)
            instances.append(
                inst.InstanceInfo(
                    worker_index=worker_index,
                    port=port,
                    data_dir=pl.Path(data_dir),
                    base_url=base_url,
                )
            )

        try:
            started_at = datetime.datetime.fromisoformat(content["startedAt"])
        except (KeyError, TypeError, ValueError) as exc:
            msg = "Invalid or missing `startedAt` in session descriptor."
            raise errors.DescriptorError(msg) from exc

        return cls(instances=tuple(instances), started_at=started_at)


def write_descriptor(descriptor: SessionDescriptor, descriptor_file: pl.Path) -> pl.Path:
    """Write the descriptor atomically."""
    descriptor_file.parent.mkdir(parents=True, exist_ok=True)
    with _get_lock(descriptor_file):
        out_file = helpers.write_json_atomic(
            out_file=descriptor_file, content=descriptor.to_dict()
        )
    LOGGER.debug(f"Session descriptor written to '{out_file}'")
    return out_file


def load_descriptor(descriptor_file: pl.Path) -> SessionDescriptor:
    """Load the descriptor written by a successful setup."""
    msg_missing = f"Session descriptor '{descriptor_file}' doesn't exist."
    if not descriptor_file.exists():
        raise errors.DescriptorError(msg_missing)

    with _get_lock(descriptor_file):
        try:
            with open(descriptor_file, encoding="utf-8") as in_fp:
                content = json.load(in_fp)
        except FileNotFoundError as exc:
            raise errors.DescriptorError(msg_missing) from exc
        except json.JSONDecodeError as exc:
            msg = f"Session descriptor '{descriptor_file}' is not valid JSON: {exc}"
            raise errors.DescriptorError(msg) from exc

    return SessionDescriptor.from_dict(content)


def remove_descriptor(descriptor_file: pl.Path) -> None:
    """Remove the descriptor, if it exists."""
    if not descriptor_file.parent.exists():
        return

    try:
        with _get_lock(descriptor_file):
            descriptor_file.unlink(missing_ok=True)
        pl.Path(f"{descriptor_file}.lock").unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.warning(f"Failed to remove session descriptor '{descriptor_file}': {exc}")
