import contextlib
import json
import os
import pathlib as pl
import signal
import tempfile
import typing as tp

import mahpastes_tests.utils.types as ttypes


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Ignore the KeyboardInterrupt signal."""
    orig_handler = None
    try:
        orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    if orig_handler is None:
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


def write_json_atomic(*, out_file: ttypes.FileType, content: dict) -> pl.Path:
    """Write dictionary content to JSON file.

    The content is written to a temporary file first and then moved in place, so readers never
    see a partially written file.
    """
    out_path = pl.Path(out_file).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        dir=out_path.parent, prefix=f".{out_path.name}_", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as out_fp:
            out_fp.write(json.dumps(content, indent=2))
        os.replace(tmp_name, out_path)
    except BaseException:
        pl.Path(tmp_name).unlink(missing_ok=True)
        raise

    return out_path
