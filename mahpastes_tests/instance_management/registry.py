"""In-memory table of live application instances."""

from mahpastes_tests.instance_management import instance as inst


class InstanceRegistry:
    """Instances keyed by worker index.

    Mutated only by spawning (insert) and termination (remove). Setup is sequential and parallel
    terminations each touch a distinct key, so single dict operations are all the locking needed.
    """

    def __init__(self) -> None:
        self._instances: dict[int, inst.Instance] = {}

    def register(self, worker_index: int, instance: inst.Instance) -> None:
        """Insert the instance, replacing any previous entry for the worker index."""
        self._instances[worker_index] = instance

    def get(self, worker_index: int) -> inst.Instance | None:
        return self._instances.get(worker_index)

    def remove(self, worker_index: int) -> None:
        self._instances.pop(worker_index, None)

    def all_indices(self) -> list[int]:
        return list(self._instances)

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, worker_index: object) -> bool:
        return worker_index in self._instances
