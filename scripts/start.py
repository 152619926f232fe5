#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then exec gunicorn on app.wsgi:app.

os.execvp replaces this process so gunicorn receives signals directly.

Environment:
  PORT             listen port (default 5000)
  WEB_CONCURRENCY  gunicorn workers (default 2)
  GUNICORN_TIMEOUT worker timeout in seconds (default 60)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip() or str(default)
    try:
        value = int(raw)
    except ValueError:
        value = low - 1
    if not low <= value <= high:
        print(f"ERROR: {name}={raw!r} must be an integer between {low} and {high}.", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv(port: int, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _env_int("PORT", 5000, low=1, high=65535)
    workers = _env_int("WEB_CONCURRENCY", 2, low=1, high=64)
    timeout = _env_int("GUNICORN_TIMEOUT", 60, low=5, high=3600)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)
    argv = gunicorn_argv(port, workers, timeout)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
