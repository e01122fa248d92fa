"""Per-run log capture for reconciliation runs.

Provides an in-memory buffer that captures log lines while a run is
active. The full text is handed back on the run result when the run
finishes; callers polling a live run read from the buffer.
"""

import logging
from datetime import datetime, timezone

# Active run buffers: run_id (str) -> list of formatted log lines
_active_logs: dict[str, list[str]] = {}

# Safety bound to prevent unbounded memory growth
MAX_LOG_LINES = 5000


def start_capture(run_id: str) -> None:
    """Begin capturing logs for a run."""
    _active_logs[run_id] = []


def append_log(run_id: str, level: str, message: str) -> None:
    """Append a formatted log line to the run's buffer."""
    buf = _active_logs.get(run_id)
    if buf is None:
        return
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    line = f"{timestamp} [{level:>7s}] {message}"
    if len(buf) < MAX_LOG_LINES:
        buf.append(line)
    elif len(buf) == MAX_LOG_LINES:
        buf.append(f"{timestamp} [WARNING] Log output truncated at {MAX_LOG_LINES} lines")


def get_live_logs(run_id: str, offset: int = 0) -> list[str] | None:
    """Get log lines for an active run starting from offset.

    Returns None if the run is not active.
    """
    buf = _active_logs.get(run_id)
    if buf is None:
        return None
    return buf[offset:]


def finish_capture(run_id: str) -> str:
    """End capture, remove from memory, return the full log text."""
    buf = _active_logs.pop(run_id, [])
    return "\n".join(buf)


class RunLogHandler(logging.Handler):
    """Logging handler that captures one run's output into its buffer.

    Records tagged with a different ``run_id`` (another run sharing the
    logger) are ignored; untagged records are captured.
    """

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def emit(self, record: logging.LogRecord) -> None:
        record_run = getattr(record, "run_id", None)
        if record_run is not None and str(record_run) != self.run_id:
            return
        try:
            message = self.format(record)
            append_log(self.run_id, record.levelname, message)
        except Exception:
            self.handleError(record)
