"""
Audit event log.

Writes one line per event, "[YYYY-MM-DD HH:MM:SS] EVENT: message", to the
console and to a per-day file LOG_PATH/app-YYYY-MM-DD.log. Files older than
the retention window are deleted when the log is opened.

An EventLog is an ordinary object owned by the application; it is built at
startup and closed at shutdown.
"""

import logging
import os
import re
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger("backdrop.event_log")

LOG_FILE_RE = re.compile(r"^app-(\d{4}-\d{2}-\d{2})\.log$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyFileHandler(logging.FileHandler):
    """
    File handler that switches to a new app-<date>.log when the date changes.
    """

    def __init__(self, directory: str, clock: Callable[[], datetime]):
        self.directory = directory
        self._clock = clock
        self._current_date = clock().date()
        super().__init__(self._path_for(self._current_date), mode="a", encoding="utf-8", delay=True)

    def _path_for(self, day: date) -> str:
        return os.path.join(self.directory, f"app-{day.isoformat()}.log")

    def emit(self, record: logging.LogRecord) -> None:
        today = self._clock().date()
        if today != self._current_date:
            if self.stream is not None:
                self.stream.close()
                self.stream = None
            self._current_date = today
            self.baseFilename = os.path.abspath(self._path_for(today))
        super().emit(record)


class _BelowError(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


class EventLog:
    """
    Records authentication, upload and save events.

    Args:
        log_path: Directory for the daily files (created if missing)
        retention_days: Delete files older than this many days (0 keeps all)
        clock: Source of the current time, used for timestamps and file names
        console: Also echo lines to stdout/stderr
    """

    def __init__(
        self,
        log_path: str,
        retention_days: int,
        clock: Callable[[], datetime] = _utcnow,
        console: bool = True,
    ):
        self.log_path = log_path
        self.retention_days = retention_days
        self._clock = clock

        Path(log_path).mkdir(parents=True, exist_ok=True)

        # Not registered with logging.getLogger: each EventLog owns its handlers
        self._logger = logging.Logger(f"backdrop.events[{log_path}]", level=logging.INFO)
        self._logger.propagate = False

        formatter = logging.Formatter("%(message)s")

        self._file_handler = DailyFileHandler(log_path, clock)
        self._file_handler.setFormatter(formatter)
        self._logger.addHandler(self._file_handler)

        if console:
            stdout = logging.StreamHandler(sys.stdout)
            stdout.addFilter(_BelowError())
            stdout.setFormatter(formatter)
            stderr = logging.StreamHandler(sys.stderr)
            stderr.setLevel(logging.ERROR)
            stderr.setFormatter(formatter)
            self._logger.addHandler(stdout)
            self._logger.addHandler(stderr)

        self.cleanup_old_logs()

    def _write(self, level: int, event: str, message: str) -> None:
        timestamp = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        self._logger.log(level, "[%s] %s: %s", timestamp, event, message)

    def cleanup_old_logs(self) -> int:
        """
        Delete daily files older than the retention window.

        Returns:
            Number of files deleted
        """
        if self.retention_days == 0:
            return 0

        cutoff = self._clock().date() - timedelta(days=self.retention_days)
        deleted = 0

        try:
            names = sorted(os.listdir(self.log_path))
        except OSError as e:
            logger.error("Failed to cleanup old logs: %s", e)
            return 0

        for name in names:
            match = LOG_FILE_RE.match(name)
            if not match:
                continue
            try:
                file_date = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            if file_date < cutoff:
                try:
                    os.remove(os.path.join(self.log_path, name))
                except OSError as e:
                    logger.error("Failed to delete old log file %s: %s", name, e)
                    continue
                deleted += 1
                self._write(logging.INFO, "LOG_CLEANUP", f"Deleted old log file: {name}")

        return deleted

    # Authentication events

    def login_success(self) -> None:
        self._write(logging.INFO, "LOGIN_SUCCESS", "Session started")

    def login_failed(self) -> None:
        self._write(logging.WARNING, "LOGIN_FAILED", "Invalid password attempt")

    # Upload events

    def upload(self, filename: str, size_mb: float) -> None:
        self._write(logging.INFO, "UPLOAD", f"{filename} ({size_mb:.2f}MB) - validated")

    def upload_failed(self, filename: str, reason: str) -> None:
        self._write(logging.WARNING, "UPLOAD_FAILED", f"{filename} - {reason}")

    # Save events

    def save(self, output_filename: str, blur: int, scale: int) -> None:
        self._write(logging.INFO, "SAVE", f"{output_filename} (blur={blur}, scale={scale})")

    # Errors and generic events

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        text = f"{message}: {exc}" if exc is not None else message
        self._write(logging.ERROR, "ERROR", text)

    def info(self, event: str, message: str) -> None:
        self._write(logging.INFO, event, message)

    def close(self) -> None:
        """Flush and close every handler."""
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
