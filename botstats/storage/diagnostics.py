"""Best-effort diagnostic log.

Appends ``[timestamp] [source ip] message`` lines (plus an optional stack)
to a plain text file. Failures are logged through structlog and swallowed:
diagnostics must never fail the operation that produced them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import structlog

log = structlog.get_logger()


class FileDiagnosticLog:
    """DiagnosticSink writing to a text file."""

    def __init__(self, path: str | Path, enabled: bool = True) -> None:
        self._path = Path(path)
        self._enabled = enabled

    async def append(self, message: str, source_ip: str, stack: str | None = None) -> None:
        if not self._enabled:
            return
        line = f"[{datetime.now(timezone.utc).isoformat()}] [{source_ip}] {message}\n"
        if stack:
            line += stack.rstrip("\n") + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError:
            log.warning("diagnostic_write_failed", path=str(self._path), exc_info=True)
