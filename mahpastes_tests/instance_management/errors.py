"""Errors raised while managing application instances."""


class HarnessError(Exception):
    pass


class InstanceSetupError(HarnessError):
    """Setup of a single worker instance failed."""

    stage = "setup"

    def __init__(self, detail: str, *, worker_index: int | None = None) -> None:
        self.detail = detail
        self.worker_index = worker_index
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.worker_index is None:
            return f"{self.stage} failed: {self.detail}"
        return f"Worker {self.worker_index} failed during {self.stage}: {self.detail}"


class PortUnavailable(InstanceSetupError):
    stage = "port allocation"

    def __init__(self, *, port: int, worker_index: int) -> None:
        self.port = port
        super().__init__(
            f"port {port} is not available for worker {worker_index}", worker_index=worker_index
        )


class ProvisioningFailed(InstanceSetupError):
    stage = "data directory provisioning"


class SpawnFailed(InstanceSetupError):
    stage = "process launch"


class ReadinessTimeout(InstanceSetupError):
    stage = "readiness wait"

    def __init__(
        self,
        *,
        url: str,
        timeout: float,
        last_error: str = "",
        worker_index: int | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.last_error = last_error
        super().__init__(
            f"server at {url} did not start within {timeout}s. Last error: {last_error or 'none'}",
            worker_index=worker_index,
        )


class ProcessError(HarnessError):
    """Asynchronous error of an already spawned process.

    It is recorded on the instance and logged, never raised.
    """

    def __init__(self, *, worker_index: int, returncode: int | None, detail: str = "") -> None:
        self.worker_index = worker_index
        self.returncode = returncode
        msg = f"Worker {worker_index}: process exited unexpectedly with code {returncode}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class DescriptorError(HarnessError):
    pass
