"""Append-only, timestamped log shared by the supervisor and its readers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock

__all__ = ["LogChunk", "LogSink", "TIMESTAMP_FORMAT", "format_line"]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class LogChunk:
    """A single formatted log line."""

    message: str
    timestamp: datetime

    @property
    def line(self) -> str:
        return format_line(self.message, self.timestamp)


def format_line(message: str, timestamp: datetime) -> str:
    return f"[{timestamp.strftime(TIMESTAMP_FORMAT)}] {message}\n"


class LogSink:
    """Write log lines to disk while notifying observers.

    The file is opened once in append mode and is never truncated. Every
    write happens under one lock, so the controller and both output readers
    can share a sink without splitting each other's lines.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] = datetime.now):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("a", encoding="utf-8")
        self._clock = clock
        self._listeners: list[Callable[[LogChunk], None]] = []
        self._lock = Lock()

    def __enter__(self) -> LogSink:  # noqa: D401 - context manager
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._handle.closed

    def close(self) -> None:
        with self._lock:
            if self._handle.closed:
                return
            self._handle.flush()
            self._handle.close()
            self._listeners.clear()

    def write(self, message: str) -> LogChunk:
        """Append ``[timestamp] message`` as one line.

        Raises ``OSError`` when the line cannot be written, including after
        the sink has been closed.
        """

        chunk = LogChunk(message=message, timestamp=self._clock())
        line = chunk.line
        with self._lock:
            if self._handle.closed:
                raise OSError(f"log sink {self.path} is closed")
            try:
                self._handle.write(line)
                self._handle.flush()
            except ValueError as exc:  # pragma: no cover - closed underneath us
                raise OSError(str(exc)) from exc
            listeners = list(self._listeners)
        for listener in listeners:
            listener(chunk)
        return chunk

    def add_listener(self, callback: Callable[[LogChunk], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                try:
                    self._listeners.remove(callback)
                except ValueError:  # pragma: no cover - already removed
                    pass

        return _remove
