"""Application instances and test environment configuration."""

import os
import pathlib as pl
import tempfile


def get_env_int(name: str, default: int) -> int:
    """Return integer value of an env variable, or the default if it is unset or empty."""
    value = os.environ.get(name) or ""
    if not value:
        return default
    try:
        return int(value)
    except ValueError as exc:
        msg = f"Invalid {name}: {value!r}"
        raise RuntimeError(msg) from exc


def get_env_float(name: str, default: float) -> float:
    """Return float value of an env variable, or the default if it is unset or empty."""
    value = os.environ.get(name) or ""
    if not value:
        return default
    try:
        return float(value)
    except ValueError as exc:
        msg = f"Invalid {name}: {value!r}"
        raise RuntimeError(msg) from exc


LAUNCH_PATH = pl.Path.cwd()

IS_CI = bool(os.environ.get("CI"))

# Root of the application project, `wails dev` is started from here
PROJECT_ROOT = pl.Path(os.environ.get("APP_PROJECT_ROOT") or LAUNCH_PATH).expanduser().resolve()

# The session descriptor is stored in this directory
HARNESS_ROOT = (
    pl.Path(os.environ.get("HARNESS_ROOT") or PROJECT_ROOT / "e2e").expanduser().resolve()
)
DESCRIPTOR_FILENAME = ".test-state.json"

# Worker N listens on `BASE_PORT + N`
BASE_PORT = get_env_int("APP_BASE_PORT", 34115)
if not 0 < BASE_PORT < 65536:
    msg = f"Invalid APP_BASE_PORT: {BASE_PORT}"
    raise RuntimeError(msg)

WORKERS_COUNT = get_env_int("APP_WORKERS", 0) or get_env_int("PW_WORKERS", 0)
WORKERS_COUNT = WORKERS_COUNT or (2 if IS_CI else 4)
if WORKERS_COUNT < 1:
    msg = f"Invalid number of workers: {WORKERS_COUNT}"
    raise RuntimeError(msg)

# Delay between spawning instances, in milliseconds
SPAWN_DELAY = get_env_int("WAILS_SPAWN_DELAY", 500)
if SPAWN_DELAY < 0:
    msg = f"Invalid WAILS_SPAWN_DELAY: {SPAWN_DELAY}"
    raise RuntimeError(msg)

# Relay output of the application processes to the log
DEBUG_APP_OUTPUT = bool(os.environ.get("DEBUG_WAILS"))

# Readiness probing, in seconds
READY_TIMEOUT = get_env_float("APP_READY_TIMEOUT", 120)
READY_ATTEMPT_TIMEOUT = 5.0
READY_INTERVAL = 1.0

# Wait after the graceful termination signal before escalating, in seconds
GRACE_PERIOD = 0.5

DATA_ROOT = (
    pl.Path(os.environ.get("APP_DATA_ROOT") or tempfile.gettempdir()).expanduser().resolve()
)
DATA_DIR_PREFIX = "mahpastes-test"
# Used by the application to override location of its persistent state
DATA_DIR_ENV = "MAHPASTES_DATA_DIR"

GO_BIN_DIR = pl.Path.home() / "go" / "bin"
EXECUTABLE_NAME = "wails"
EXECUTABLE_CANDIDATES: tuple[str, ...] = (
    EXECUTABLE_NAME,
    str(GO_BIN_DIR / EXECUTABLE_NAME),
    "/usr/local/bin/wails",
    "/usr/local/go/bin/wails",
)
if os.environ.get("APP_EXECUTABLE"):
    EXECUTABLE_CANDIDATES = (os.environ["APP_EXECUTABLE"], *EXECUTABLE_CANDIDATES)

# Arguments for the application, `{port}` is replaced with the instance port
APP_ARGS: tuple[str, ...] = ("dev", "-loglevel", "warning", "-devserver", "localhost:{port}")

# Kill processes listening on instance ports before starting new instances
KILL_STALE_INSTANCES = bool(os.environ.get("KILL_STALE_INSTANCES"))
