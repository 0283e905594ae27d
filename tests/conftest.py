"""Shared pytest fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

import pytest

from aware.config import SupervisorSettings

Waiter = Callable[..., None]


@pytest.fixture()
def settings(tmp_path: Path) -> SupervisorSettings:
    return SupervisorSettings(
        log_dir=tmp_path / "logs",
        pid_dir=tmp_path / "pids",
        restart_delay=0.1,
        spawn_retry_delay=0.1,
        poll_interval=0.02,
    )


@pytest.fixture()
def wait_for() -> Waiter:
    def _wait(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            time.sleep(0.02)

    return _wait
