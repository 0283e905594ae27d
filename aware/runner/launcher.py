"""Start the supervised program with both output streams piped."""

from __future__ import annotations

import io
import subprocess
from dataclasses import dataclass
from typing import IO, TextIO

from aware.runner.log_stream import LogSink
from aware.runner.program import SupervisedProgram

__all__ = ["LaunchedChild", "SpawnError", "launch"]


class SpawnError(RuntimeError):
    """Raised when the program cannot be started (missing, not executable, ...)."""


@dataclass(slots=True)
class LaunchedChild:
    """A live child process and the pipes detached from it."""

    process: subprocess.Popen[bytes]
    stdout: TextIO
    stderr: TextIO

    @property
    def pid(self) -> int:
        return self.process.pid


def launch(program: SupervisedProgram, sink: LogSink) -> LaunchedChild:
    sink.write(f"Starting process: {program.command_line}")
    try:
        process = subprocess.Popen(  # noqa: S603
            program.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise SpawnError(f"{program.executable}: {exc.strerror or exc}") from exc
    # PIPE guarantees both handles are set
    assert process.stdout is not None and process.stderr is not None
    try:
        sink.write(f"Process started, PID: {process.pid}")
    except OSError:
        process.kill()
        process.wait()
        raise
    return LaunchedChild(
        process=process,
        stdout=_line_reader(process.stdout),
        stderr=_line_reader(process.stderr),
    )


def _line_reader(pipe: IO[bytes]) -> TextIO:
    # newline="\n": only LF ends a line, a bare CR stays inside it
    return io.TextIOWrapper(pipe, encoding="utf-8", errors="replace", newline="\n")
