from __future__ import annotations

import os
import signal
import sys
import threading
import time
from dataclasses import replace

import pytest

from aware.config import SupervisorSettings
from aware.runner import (
    LogSink,
    ShutdownSignal,
    SpawnError,
    SupervisedProgram,
    Supervisor,
    SupervisorError,
    SupervisorState,
    install_signal_handlers,
    launch,
)
from aware.runner.supervisor import describe_exit

LONG_RUNNING = "import time; print('ready', flush=True); time.sleep(60)"
IGNORES_SIGTERM = (
    "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
    "print('ready', flush=True); time.sleep(60)"
)


class BackgroundRun:
    """Run a supervisor on a worker thread and keep whatever it raised."""

    def __init__(self, supervisor: Supervisor) -> None:
        self.supervisor = supervisor
        self.error: BaseException | None = None
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            self.supervisor.run()
        except BaseException as exc:  # noqa: BLE001 - surfaced to the test
            self.error = exc

    def start(self) -> BackgroundRun:
        self.thread.start()
        return self

    def __enter__(self) -> BackgroundRun:
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def stop(self, timeout: float = 10.0) -> None:
        self.supervisor.shutdown.set()
        self.thread.join(timeout)
        assert not self.thread.is_alive(), "supervisor did not stop"


def _log(program: SupervisedProgram) -> str:
    return program.log_path.read_text() if program.log_path.exists() else ""


def _program(settings: SupervisorSettings, code: str) -> SupervisedProgram:
    return SupervisedProgram.from_argv([sys.executable, "-c", code], settings)


def test_restarts_child_after_exit(settings: SupervisorSettings, wait_for) -> None:
    program = _program(settings, "print('hello')")
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=settings)
        with BackgroundRun(supervisor) as background:
            wait_for(lambda: supervisor.spawn_count >= 2)
        assert background.error is None

    text = _log(program)
    assert "Starting process: " in text
    assert "Process started, PID: " in text
    assert "[stdout] hello" in text
    assert "Process exited with status: exit code 0" in text
    assert "Restarting process in 0.1 seconds..." in text
    assert text.index("[stdout] hello") < text.index("Process exited with status")
    assert text.index("Process exited with status") < text.index("Restarting process")
    assert text.rstrip().endswith("Supervisor shutting down")
    assert supervisor.state is SupervisorState.TERMINATED
    assert supervisor.child is None


def test_shutdown_terminates_running_child(settings: SupervisorSettings, wait_for) -> None:
    program = _program(settings, LONG_RUNNING)
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=settings)
        with BackgroundRun(supervisor) as background:
            wait_for(lambda: "[stdout] ready" in _log(program))
            assert supervisor.state is SupervisorState.RUNNING
            child = supervisor.child
            assert child is not None
        assert background.error is None

    assert child.process.returncode == -signal.SIGTERM
    text = _log(program)
    assert f"Sending SIGTERM to child process {child.pid}" in text
    assert "Child process exited with status: terminated by SIGTERM" in text
    assert "Restarting process" not in text
    assert supervisor.spawn_count == 1


def test_no_restart_once_shutdown_requested(settings: SupervisorSettings, wait_for) -> None:
    slow = replace(settings, restart_delay=30.0)
    program = _program(settings, "pass")
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=slow)
        background = BackgroundRun(supervisor).start()
        wait_for(lambda: "Restarting process in 30 seconds..." in _log(program))
        background.stop(timeout=5.0)

    assert background.error is None
    assert supervisor.spawn_count == 1
    assert _log(program).count("Starting process: ") == 1


def test_spawn_failures_are_retried(settings: SupervisorSettings, wait_for) -> None:
    program = SupervisedProgram.from_argv(["/definitely/not/a/real/binary"], settings)
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=settings)
        with BackgroundRun(supervisor) as background:
            wait_for(lambda: _log(program).count("Failed to start process") >= 3)
        assert background.error is None

    assert supervisor.spawn_count == 0
    assert "Retrying in 0.1 seconds..." in _log(program)
    assert supervisor.state is SupervisorState.TERMINATED


def test_recovers_once_spawn_succeeds(settings: SupervisorSettings, wait_for) -> None:
    program = _program(settings, LONG_RUNNING)
    attempts: list[int] = []

    def _flaky(program: SupervisedProgram, sink: LogSink):
        attempts.append(1)
        if len(attempts) < 3:
            raise SpawnError("temporarily unavailable")
        return launch(program, sink)

    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=settings, launcher=_flaky)
        with BackgroundRun(supervisor):
            wait_for(lambda: supervisor.state is SupervisorState.RUNNING)

    assert len(attempts) == 3
    assert supervisor.spawn_count == 1
    assert _log(program).count("Failed to start process: temporarily unavailable") == 2


def test_stop_timeout_escalates_to_kill(settings: SupervisorSettings, wait_for) -> None:
    bounded = replace(settings, stop_timeout=0.5)
    program = _program(settings, IGNORES_SIGTERM)
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=bounded)
        with BackgroundRun(supervisor):
            wait_for(lambda: "[stdout] ready" in _log(program))

    text = _log(program)
    assert "still running after 0.5 seconds, sending SIGKILL" in text
    assert "Child process exited with status: terminated by SIGKILL" in text


def test_removed_pid_file_is_a_leave_request(settings: SupervisorSettings, wait_for) -> None:
    program = _program(settings, LONG_RUNNING)
    program.pid_path.parent.mkdir(parents=True)
    program.pid_path.write_text(f"{os.getpid()}\n")
    with LogSink(program.log_path) as sink:
        supervisor = Supervisor(program, sink, settings=settings)
        background = BackgroundRun(supervisor).start()
        wait_for(lambda: "[stdout] ready" in _log(program))
        program.pid_path.unlink()
        background.thread.join(10)
        assert not background.thread.is_alive()

    assert supervisor.shutdown.is_set()
    assert "removed, treating as leave request" in _log(program)
    assert supervisor.state is SupervisorState.TERMINATED


def test_log_failure_aborts_and_reaps_child(settings: SupervisorSettings, wait_for) -> None:
    program = _program(settings, LONG_RUNNING)
    sink = LogSink(program.log_path)
    supervisor = Supervisor(program, sink, settings=settings)
    background = BackgroundRun(supervisor).start()
    wait_for(lambda: "[stdout] ready" in _log(program))
    child = supervisor.child
    assert child is not None
    sink.close()
    background.stop()

    assert isinstance(background.error, OSError)
    assert child.process.returncode is not None
    assert supervisor.child is None


def test_describe_exit() -> None:
    assert describe_exit(0) == "exit code 0"
    assert describe_exit(3) == "exit code 3"
    assert describe_exit(-signal.SIGKILL) == "terminated by SIGKILL"


def test_signal_handler_sets_shutdown() -> None:
    shutdown = ShutdownSignal()
    previous = install_signal_handlers(shutdown, signals=(signal.SIGUSR1,))
    try:
        os.kill(os.getpid(), signal.SIGUSR1)
        assert shutdown.wait(5.0)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


class _LockedWake:
    """Stands in for the wake event while its lock is held by the waiting thread."""

    def set(self) -> None:
        raise AssertionError("signal handler touched the wake event")

    def wait(self, timeout: float | None) -> bool:
        return False


def test_signal_handler_only_flips_the_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    shutdown = ShutdownSignal()
    monkeypatch.setattr(shutdown, "_wake", _LockedWake())
    previous = install_signal_handlers(shutdown, signals=(signal.SIGUSR1,))
    try:
        os.kill(os.getpid(), signal.SIGUSR1)
        assert shutdown.wait(5.0)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def test_set_from_another_thread_wakes_waiter_early() -> None:
    shutdown = ShutdownSignal()
    timer = threading.Timer(0.1, shutdown.set)
    timer.start()
    started = time.monotonic()
    try:
        assert shutdown.wait(30.0)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 5.0


def test_signal_handlers_need_main_thread() -> None:
    errors: list[BaseException] = []

    def _install() -> None:
        try:
            install_signal_handlers(ShutdownSignal(), signals=(signal.SIGUSR1,))
        except SupervisorError as exc:
            errors.append(exc)

    thread = threading.Thread(target=_install)
    thread.start()
    thread.join()
    assert len(errors) == 1


@pytest.mark.parametrize("already_set", [True, False])
def test_shutdown_signal_is_one_way(already_set: bool) -> None:
    shutdown = ShutdownSignal()
    if already_set:
        shutdown.set()
        shutdown.set()
    assert shutdown.is_set() is already_set
    assert shutdown.wait(0.01) is already_set
