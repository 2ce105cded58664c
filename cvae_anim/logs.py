from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple


LogFn = Callable[[str], None]


def make_logger(log_file: Optional[Path] = None) -> Tuple[LogFn, Optional[object]]:
    """Return a ``log(message)`` callable and the open file handle, if any.

    Lines are timestamped, printed, and mirrored to ``log_file`` when given.
    The caller owns the handle and should close it when done.
    """
    handle = None
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handle = log_path.open("a", encoding="utf-8")

    def _log(message: str) -> None:
        line = f"[{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}] {message}"
        print(line, flush=True)
        if handle is not None:
            handle.write(line + "\n")
            handle.flush()

    return _log, handle


def null_log(message: str) -> None:
    return None
