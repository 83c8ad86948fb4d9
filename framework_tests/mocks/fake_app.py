#!/usr/bin/env python3
"""Fake application for testing instance management.

Listens on the given port and answers every GET request. Records its start in the data directory
passed in the `MAHPASTES_DATA_DIR` environment variable. Accepts the arguments of `wails dev`,
so it can stand in for the real executable.
"""

import argparse
import http.server
import os
import pathlib as pl
import signal
import subprocess
import sys
import time

CHILD_CODE = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); time.sleep(600)"
)


def get_args() -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])
    parser.add_argument("command", nargs="?", default="dev", help="Wails command (ignored)")
    parser.add_argument("-loglevel", default="info", help="Log level (ignored)")
    parser.add_argument("-devserver", default="", help="Address to listen on, `host:port`")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument(
        "--status", type=int, default=200, help="HTTP status code of responses (default: 200)"
    )
    parser.add_argument(
        "--crash", action="store_true", help="Exit with error right after start"
    )
    parser.add_argument(
        "--hang", action="store_true", help="Never start listening"
    )
    parser.add_argument(
        "--ignore-sigterm", action="store_true", help="Ignore the SIGTERM signal"
    )
    parser.add_argument(
        "--spawn-child",
        action="store_true",
        help="Start a child process that ignores SIGTERM, record its PID in `child.pid`",
    )
    args = parser.parse_args()

    if args.port is None:
        if not args.devserver:
            parser.error("either --port or -devserver is required")
        args.port = int(args.devserver.rpartition(":")[2])

    return args


def main() -> int:
    args = get_args()

    if args.crash:
        print("crashing on purpose", file=sys.stderr, flush=True)
        return 3

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    data_dir = pl.Path(os.environ["MAHPASTES_DATA_DIR"])

    if args.spawn_child:
        # The child stays in the process group of the application
        child = subprocess.Popen([sys.executable, "-c", CHILD_CODE])
        (data_dir / "child.pid").write_text(f"{child.pid}\n", encoding="utf-8")

    (data_dir / ".started").write_text(f"{os.getpid()}\n", encoding="utf-8")

    if args.hang:
        while True:
            time.sleep(1)

    class Handler(http.server.BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            body = b"fake app"
            self.send_response(args.status)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *log_args: object) -> None:  # noqa: A002
            pass

    server = http.server.ThreadingHTTPServer(("127.0.0.1", args.port), Handler)
    print(f"listening on port {args.port}", flush=True)
    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
