"""PID files that let one ``aware`` invocation find and stop another."""

from __future__ import annotations

import logging
import os
import signal
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = [
    "LeaveOutcome",
    "LeaveStatus",
    "PidParseError",
    "PidRegistry",
    "ROSTER_NAME",
    "RosterEntry",
    "SignalDeliveryError",
]

logger = logging.getLogger(__name__)

ROSTER_NAME = "processes.list"
PID_SUFFIX = ".pid"


class PidParseError(ValueError):
    """Raised when a PID file does not hold a usable process id."""


class SignalDeliveryError(RuntimeError):
    """Raised when a stop signal cannot reach its target."""


class LeaveStatus(str, Enum):
    """Result of asking one supervisor to stop."""

    SIGNALLED = "signalled"
    NOT_RUNNING = "not_running"
    STALE = "stale"
    INVALID = "invalid"
    FAILED = "failed"


@dataclass(slots=True)
class LeaveOutcome:
    name: str
    status: LeaveStatus
    pid: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in {LeaveStatus.SIGNALLED, LeaveStatus.NOT_RUNNING, LeaveStatus.STALE}

    @property
    def message(self) -> str:
        if self.status is LeaveStatus.SIGNALLED:
            return f"Sent SIGTERM to {self.name} (PID: {self.pid})."
        if self.status is LeaveStatus.NOT_RUNNING:
            return f"PID file for {self.name} not found, process is not running."
        if self.status is LeaveStatus.STALE:
            return f"{self.name} (PID: {self.pid}) is no longer running; removed stale PID file."
        if self.status is LeaveStatus.INVALID:
            return f"Cannot read PID for {self.name}: {self.detail}"
        return f"Failed to signal {self.name} (PID: {self.pid}): {self.detail}"


@dataclass(frozen=True, slots=True)
class RosterEntry:
    name: str
    value: str


class PidRegistry:
    """Directory of ``<name>.pid`` files plus the shared roster file.

    The PID stored is always the supervisor's own, so ``leave`` reaches the
    process that knows how to stop its child.
    """

    def __init__(self, pid_dir: Path, *, kill: Callable[[int, int], None] = os.kill) -> None:
        self.pid_dir = Path(pid_dir)
        self._kill = kill

    @property
    def roster_path(self) -> Path:
        return self.pid_dir / ROSTER_NAME

    def pid_path(self, name: str) -> Path:
        return self.pid_dir / f"{name}{PID_SUFFIX}"

    # ------------------------------------------------------------ supervisor side
    def register(self, name: str, pid: int | None = None) -> Path:
        pid = os.getpid() if pid is None else pid
        self.pid_dir.mkdir(parents=True, exist_ok=True)
        path = self.pid_path(name)
        path.write_text(f"{pid}\n", encoding="utf-8")
        with self.roster_path.open("a", encoding="utf-8") as roster:
            roster.write(f"{name}:{pid}\n")
        logger.debug("Registered %s as PID %s in %s", name, pid, path)
        return path

    def unregister(self, name: str, pid: int | None = None) -> bool:
        """Remove our own PID file and roster line. Returns whether the file went away."""

        pid = os.getpid() if pid is None else pid
        path = self.pid_path(name)
        removed = False
        try:
            current = self.read_pid(path)
        except FileNotFoundError:
            current = None
        except PidParseError:
            current = pid
        if current == pid:
            path.unlink(missing_ok=True)
            removed = True
        elif current is not None:
            logger.info("%s now belongs to PID %s, leaving it in place", path, current)
        self._forget(name, pid)
        return removed

    def _forget(self, name: str, pid: int) -> None:
        try:
            lines = self.roster_path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return
        record = f"{name}:{pid}"
        kept = [line for line in lines if line.strip() != record]
        if len(kept) != len(lines):
            self.roster_path.write_text("".join(f"{line}\n" for line in kept), encoding="utf-8")

    # ------------------------------------------------------------- reading state
    @staticmethod
    def read_pid(path: Path) -> int:
        raw = Path(path).read_text(encoding="utf-8").strip()
        try:
            pid = int(raw)
        except ValueError:
            raise PidParseError(f"{path.name}: {raw!r} is not a process id") from None
        if pid <= 0:
            raise PidParseError(f"{path.name}: {pid} is not a process id")
        return pid

    def pid_files(self) -> list[Path]:
        if not self.pid_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.pid_dir.glob(f"*{PID_SUFFIX}")
            if path.name != ROSTER_NAME and path.is_file()
        )

    def roster(self) -> list[RosterEntry]:
        try:
            text = self.roster_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return list(_parse_roster(text))

    # -------------------------------------------------------------- leave side
    def leave(self, name: str) -> LeaveOutcome:
        path = self.pid_path(name)
        if not path.is_file():
            return LeaveOutcome(name=name, status=LeaveStatus.NOT_RUNNING)
        return self._signal_file(name, path)

    def leave_all(self) -> list[LeaveOutcome]:
        """Signal every registered supervisor, then reset the roster."""

        outcomes = []
        for path in self.pid_files():
            outcome = self._signal_file(path.stem, path)
            if not outcome.ok:
                logger.warning(outcome.message)
            outcomes.append(outcome)
        if self.pid_dir.is_dir():
            self.roster_path.write_text("", encoding="utf-8")
        return outcomes

    def _signal_file(self, name: str, path: Path) -> LeaveOutcome:
        try:
            pid = self.read_pid(path)
        except FileNotFoundError:
            return LeaveOutcome(name=name, status=LeaveStatus.NOT_RUNNING)
        except (PidParseError, OSError) as exc:
            return LeaveOutcome(name=name, status=LeaveStatus.INVALID, detail=str(exc))
        try:
            self._deliver(pid)
        except ProcessLookupError:
            # nobody left to clean up after itself
            path.unlink(missing_ok=True)
            return LeaveOutcome(name=name, status=LeaveStatus.STALE, pid=pid)
        except SignalDeliveryError as exc:
            return LeaveOutcome(name=name, status=LeaveStatus.FAILED, pid=pid, detail=str(exc))
        return LeaveOutcome(name=name, status=LeaveStatus.SIGNALLED, pid=pid)

    def _deliver(self, pid: int) -> None:
        try:
            self._kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            raise
        except OSError as exc:
            raise SignalDeliveryError(exc.strerror or str(exc)) from exc


def _parse_roster(text: str) -> Iterator[RosterEntry]:
    for line in text.splitlines():
        name, sep, value = line.strip().rpartition(":")
        if not sep or not name or not value:
            continue
        yield RosterEntry(name=name, value=value)
