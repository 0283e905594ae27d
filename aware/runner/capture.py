"""Drain a child's stdout and stderr into the shared log sink."""

from __future__ import annotations

import logging
import threading
from typing import TextIO

from aware.runner.launcher import LaunchedChild
from aware.runner.log_stream import LogSink

__all__ = ["OutputCapturer"]

logger = logging.getLogger(__name__)


class OutputCapturer:
    """One reader thread per output stream of the current child.

    Readers only ever see the pipes, never the process handle. ``join`` is
    the barrier the supervisor crosses before it starts the next child.
    """

    def __init__(self, sink: LogSink) -> None:
        self.sink = sink
        self._threads: list[threading.Thread] = []

    @property
    def active(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self, child: LaunchedChild) -> None:
        if self._threads:
            raise RuntimeError("previous readers have not been joined")
        for pipe, label in ((child.stdout, "stdout"), (child.stderr, "stderr")):
            t = threading.Thread(
                target=self._pump,
                args=(pipe, label),
                name=f"aware-{label}-{child.pid}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)

    def join(self) -> None:
        threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()

    def _pump(self, pipe: TextIO, label: str) -> None:
        with pipe:
            while True:
                try:
                    line = pipe.readline()
                except OSError as exc:
                    logger.warning("Reading %s failed: %s", label, exc)
                    try:
                        self.sink.write(f"[{label} error] read failed: {exc}")
                    except OSError:
                        pass
                    return
                if not line:
                    return
                text = line.rstrip("\r\n")
                try:
                    self.sink.write(f"[{label}] {text}")
                except OSError as exc:
                    logger.warning("Dropping %s output, log write failed: %s", label, exc)
                    return
