"""Supervisor settings loaded from TOML plus CLI overrides."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "SupervisorSettings",
    "load_settings",
]

DEFAULT_CONFIG_NAME = "aware.toml"
_DEFAULT_LOG_DIR = Path("aware_logs")
_DEFAULT_PID_DIR = Path("aware_pids")


class ConfigError(ValueError):
    """Raised when a settings file holds values the supervisor cannot use."""


@dataclass(slots=True)
class SupervisorSettings:
    """Where state lives on disk and how the restart loop is paced."""

    log_dir: Path = _DEFAULT_LOG_DIR
    pid_dir: Path = _DEFAULT_PID_DIR
    restart_delay: float = 2.0
    spawn_retry_delay: float = 5.0
    poll_interval: float = 0.2
    stop_timeout: float | None = None
    watch_pid_file: bool = True

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> SupervisorSettings:
        paths = data.get("paths", {})
        runner = data.get("supervisor", {})
        if not isinstance(paths, dict) or not isinstance(runner, dict):
            raise ConfigError("[paths] and [supervisor] must be tables")
        stop_timeout = runner.get("stop_timeout")
        return cls(
            log_dir=_directory(paths, "logs", _DEFAULT_LOG_DIR),
            pid_dir=_directory(paths, "pids", _DEFAULT_PID_DIR),
            restart_delay=_interval(runner, "restart_delay", 2.0),
            spawn_retry_delay=_interval(runner, "spawn_retry_delay", 5.0),
            poll_interval=_interval(runner, "poll_interval", 0.2),
            stop_timeout=None if stop_timeout is None else _interval(runner, "stop_timeout", 0.0),
            watch_pid_file=_flag(runner, "watch_pid_file", True),
        )

    @classmethod
    def from_toml(cls, path: Path) -> SupervisorSettings:
        try:
            data = tomllib.loads(Path(path).read_text("utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
        return cls.from_mapping(data)

    def merged(
        self,
        *,
        log_dir: Path | None = None,
        pid_dir: Path | None = None,
    ) -> SupervisorSettings:
        """Return a copy that applies CLI overrides."""

        return replace(
            self,
            log_dir=log_dir or self.log_dir,
            pid_dir=pid_dir or self.pid_dir,
        )


def _interval(section: dict[str, Any], key: str, default: float) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ConfigError(f"supervisor.{key} must be a number (received {raw!r})")
    if raw < 0:
        raise ConfigError(f"supervisor.{key} must not be negative (received {raw!r})")
    return float(raw)


def _flag(section: dict[str, Any], key: str, default: bool) -> bool:
    raw = section.get(key, default)
    if not isinstance(raw, bool):
        raise ConfigError(f"supervisor.{key} must be true or false (received {raw!r})")
    return raw


def _directory(section: dict[str, Any], key: str, default: Path) -> Path:
    raw = section.get(key)
    if raw is None:
        return default
    if not isinstance(raw, str) or not raw:
        raise ConfigError(f"paths.{key} must be a non-empty string (received {raw!r})")
    return Path(raw)


def load_settings(path: Path | None = None, *, cwd: Path | None = None) -> SupervisorSettings:
    """Load settings from ``path``, else ``aware.toml`` in ``cwd``, else defaults."""

    if path is not None:
        return SupervisorSettings.from_toml(path)
    candidate = (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME
    if candidate.is_file():
        return SupervisorSettings.from_toml(candidate)
    return SupervisorSettings()
