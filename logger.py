"""Simple logger abstraction."""

from __future__ import annotations

import sys
from datetime import datetime
from typing import TextIO


_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


class Logger:
    """Minimal console logger with level filtering."""

    def __init__(self, level: str = "INFO", stream: TextIO | None = None, timestamps: bool = False) -> None:
        self._level = _LEVELS.get(level.upper(), _LEVELS["INFO"])
        self._stream = stream
        self._timestamps = timestamps

    def set_stream(self, stream: TextIO | None) -> None:
        self._stream = stream

    def set_level(self, level: str) -> None:
        self._level = _LEVELS.get(level.upper(), _LEVELS["INFO"])

    def set_timestamps(self, enabled: bool) -> None:
        self._timestamps = enabled

    def _write(self, label: str, message: str) -> None:
        stream = self._stream or sys.stdout
        if self._timestamps:
            stamp = datetime.now().strftime("%H:%M:%S")
            message = f"{stamp} {label:<5} {message}"
        print(message, file=stream)

    def debug(self, message: str) -> None:
        if self._level <= _LEVELS["DEBUG"]:
            self._write("DEBUG", message)

    def info(self, message: str) -> None:
        if self._level <= _LEVELS["INFO"]:
            self._write("INFO", message)

    def warn(self, message: str) -> None:
        if self._level <= _LEVELS["WARN"]:
            self._write("WARN", message)

    def error(self, message: str) -> None:
        if self._level <= _LEVELS["ERROR"]:
            self._write("ERROR", message)


_LOGGER = Logger()


def get_logger() -> Logger:
    """Return the shared logger instance."""
    return _LOGGER
