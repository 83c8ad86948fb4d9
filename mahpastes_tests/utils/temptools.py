import functools
import tempfile
from pathlib import Path


@functools.cache
def get_basetemp() -> Path:
    """Return base temporary directory for harness artifacts."""
    basetemp = Path(tempfile.gettempdir()) / "mahpastes-tests"
    basetemp.mkdir(mode=0o700, parents=True, exist_ok=True)
    return basetemp
