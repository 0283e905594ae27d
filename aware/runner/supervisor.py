"""Restart loop that keeps one program running until told to stop."""

from __future__ import annotations

import logging
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Iterable
from enum import Enum
from types import FrameType
from typing import Any

from aware.config import SupervisorSettings
from aware.runner.capture import OutputCapturer
from aware.runner.launcher import LaunchedChild, SpawnError, launch
from aware.runner.log_stream import LogSink
from aware.runner.program import SupervisedProgram

__all__ = [
    "ShutdownSignal",
    "Supervisor",
    "SupervisorError",
    "SupervisorState",
    "describe_exit",
    "install_signal_handlers",
]

logger = logging.getLogger(__name__)

Launcher = Callable[[SupervisedProgram, LogSink], LaunchedChild]


class SupervisorError(RuntimeError):
    """Raised when the supervisor cannot set up its own infrastructure."""


class SupervisorState(str, Enum):
    """Lifecycle states for a supervisor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"


class ShutdownSignal:
    """One-way stop flag shared between signal handlers and the restart loop.

    Signal handlers run on the main thread between bytecodes, possibly while
    that thread is inside ``wait`` holding the event's lock. ``request`` is
    the handler-side entry: it only assigns a flag, and ``wait`` re-checks
    the flag at least every ``WAKE_INTERVAL`` seconds.
    """

    WAKE_INTERVAL = 0.05

    def __init__(self) -> None:
        self._requested = False
        self._wake = threading.Event()

    def request(self) -> None:
        self._requested = True

    def set(self) -> None:
        self._requested = True
        self._wake.set()

    def is_set(self) -> bool:
        return self._requested

    def wait(self, timeout: float | None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early once the flag is set."""

        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._requested:
            slice_ = self.WAKE_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                slice_ = min(slice_, remaining)
            self._wake.wait(slice_)
        return True


def install_signal_handlers(
    shutdown: ShutdownSignal,
    signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
) -> dict[signal.Signals, Any]:
    """Route ``signals`` to ``shutdown``. Returns the previous handlers."""

    def _handle(signum: int, _frame: FrameType | None) -> None:
        shutdown.request()

    previous: dict[signal.Signals, Any] = {}
    for signum in signals:
        try:
            previous[signum] = signal.signal(signum, _handle)
        except (ValueError, OSError) as exc:
            raise SupervisorError(f"Cannot install {signum.name} handler: {exc}") from exc
    return previous


def describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"terminated by {name}"
    return f"exit code {returncode}"


class Supervisor:
    """Drives one program through start, watch, restart and stop.

    The loop polls instead of blocking on the child so that it can notice a
    shutdown request between checks. Every delay is a wait on the shutdown
    signal, so a stop request cuts pending restarts short.
    """

    def __init__(
        self,
        program: SupervisedProgram,
        sink: LogSink,
        *,
        settings: SupervisorSettings | None = None,
        shutdown: ShutdownSignal | None = None,
        launcher: Launcher = launch,
    ) -> None:
        self.program = program
        self.sink = sink
        self.settings = settings or SupervisorSettings()
        self.shutdown = shutdown or ShutdownSignal()
        self.launcher = launcher
        self.capturer = OutputCapturer(sink)
        self.state = SupervisorState.IDLE
        self.spawn_count = 0
        self._child: LaunchedChild | None = None

    @property
    def child(self) -> LaunchedChild | None:
        return self._child

    def run(self) -> None:
        """Supervise until shutdown. ``OSError`` from the log aborts the loop."""

        watch_pid_file = self.settings.watch_pid_file and self.program.pid_path.exists()
        self.sink.write(f"Starting supervisor for {self.program.name}")
        try:
            while True:
                if watch_pid_file and not self.shutdown.is_set():
                    self._check_pid_file()
                if self.shutdown.is_set():
                    self._stop()
                    break
                if self._child is None:
                    self._spawn()
                else:
                    self._check_child()
        except BaseException:
            self._abandon()
            raise
        self.sink.write("Supervisor shutting down")

    # ------------------------------------------------------------------ helpers
    def _check_pid_file(self) -> None:
        if not self.program.pid_path.exists():
            self.sink.write(
                f"PID file {self.program.pid_path} removed, treating as leave request"
            )
            self.shutdown.set()

    def _spawn(self) -> None:
        self.state = SupervisorState.STARTING
        try:
            child = self.launcher(self.program, self.sink)
        except SpawnError as exc:
            self.state = SupervisorState.IDLE
            delay = self.settings.spawn_retry_delay
            self.sink.write(f"Failed to start process: {exc}. Retrying in {delay:g} seconds...")
            self.shutdown.wait(delay)
            return
        self._child = child
        self.spawn_count += 1
        self.capturer.start(child)
        self.state = SupervisorState.RUNNING

    def _check_child(self) -> None:
        assert self._child is not None
        try:
            returncode = self._child.process.poll()
        except OSError as exc:
            self.sink.write(f"Failed to check process status: {exc}. Restarting...")
            self._release()
            self._pause_before_restart()
            return
        if returncode is None:
            self.shutdown.wait(self.settings.poll_interval)
            return
        # drain the pipes first so the child's last lines precede the exit line
        self._release()
        self.sink.write(f"Process exited with status: {describe_exit(returncode)}")
        self._pause_before_restart()

    def _release(self) -> None:
        self._child = None
        self.capturer.join()
        self.state = SupervisorState.IDLE

    def _pause_before_restart(self) -> None:
        if self.shutdown.is_set():
            return
        delay = self.settings.restart_delay
        self.sink.write(f"Restarting process in {delay:g} seconds...")
        self.shutdown.wait(delay)

    def _stop(self) -> None:
        self.state = SupervisorState.STOPPING
        self.sink.write("Received shutdown request, stopping supervisor")
        child = self._child
        if child is not None:
            self.sink.write(f"Sending SIGTERM to child process {child.pid}")
            returncode = self._terminate(child)
            self._child = None
            self.sink.write(f"Child process exited with status: {describe_exit(returncode)}")
        self.capturer.join()
        self.state = SupervisorState.TERMINATED

    def _terminate(self, child: LaunchedChild) -> int:
        child.process.terminate()
        timeout = self.settings.stop_timeout
        try:
            return child.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.sink.write(
                f"Child process {child.pid} still running after {timeout:g} seconds, "
                "sending SIGKILL"
            )
            child.process.kill()
            return child.process.wait()

    def _abandon(self) -> None:
        """Reap the child without logging; used when the loop dies."""

        child, self._child = self._child, None
        if child is not None:
            logger.error("Supervision aborted, killing child process %s", child.pid)
            child.process.kill()
            child.process.wait()
        self.capturer.join()
        self.state = SupervisorState.TERMINATED
