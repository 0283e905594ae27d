"""Supervisor engine: launcher, output capture, log sink and restart loop."""

from .capture import OutputCapturer
from .launcher import LaunchedChild, SpawnError, launch
from .log_stream import LogChunk, LogSink
from .program import SupervisedProgram
from .supervisor import (
    ShutdownSignal,
    Supervisor,
    SupervisorError,
    SupervisorState,
    install_signal_handlers,
)

__all__ = [
    "LaunchedChild",
    "LogChunk",
    "LogSink",
    "OutputCapturer",
    "ShutdownSignal",
    "SpawnError",
    "SupervisedProgram",
    "Supervisor",
    "SupervisorError",
    "SupervisorState",
    "install_signal_handlers",
    "launch",
]
