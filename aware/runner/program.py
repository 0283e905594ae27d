"""Descriptor for the program a supervisor keeps alive."""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from aware.config import SupervisorSettings

__all__ = ["SupervisedProgram", "program_name"]


def program_name(executable: str) -> str:
    """Name used for log and PID files: the executable's file name."""

    return Path(executable).name or executable


@dataclass(frozen=True, slots=True)
class SupervisedProgram:
    """Immutable description of one supervised command."""

    executable: str
    args: tuple[str, ...]
    name: str
    log_path: Path
    pid_path: Path

    @classmethod
    def from_argv(cls, argv: Sequence[str], settings: SupervisorSettings) -> SupervisedProgram:
        if not argv:
            raise ValueError("argv must name a program")
        executable = argv[0]
        name = program_name(executable)
        return cls(
            executable=executable,
            args=tuple(argv[1:]),
            name=name,
            log_path=Path(settings.log_dir) / f"{name}.log",
            pid_path=Path(settings.pid_dir) / f"{name}.pid",
        )

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)
