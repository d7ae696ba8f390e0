"""Structured simulation logging.

Every entry is one JSON line. The first entry a logger writes for a key is preceded by
a header line giving the column names and types, so later entries carry only the values
and the model cycle they were written at.
"""
from __future__ import annotations

import hashlib
import json
import logging as _logging
import sys
from functools import partialmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, TypeAlias, Union

import numpy as np

from bcsim.logging.encoding import NumpyEncoder

LogLevel: TypeAlias = int
LogData: TypeAlias = Union[str, dict]
SimulationCycleGetter: TypeAlias = Callable[[], int]

CRITICAL = _logging.CRITICAL
DEBUG = _logging.DEBUG
FATAL = _logging.FATAL
INFO = _logging.INFO
WARNING = _logging.WARNING

ROOT_LOGGER_NAME = "bcsim"

_DEFAULT_LEVEL = INFO

_FORMATTER = _logging.Formatter("%(message)s")


class InconsistentLoggedColumnsError(Exception):
    """A logged entry does not have the columns recorded in its key's header."""


def _no_simulation_cycle() -> int:
    return -1


_get_simulation_cycle: SimulationCycleGetter = _no_simulation_cycle
_loggers: Dict[str, Logger] = {}
# (logger name, key) -> (uuid, columns) for every key that has had its header written
_headers: Dict[Tuple[str, str], Tuple[str, dict]] = {}


def initialise(
    add_stdout_handler: bool = True,
    simulation_cycle_getter: SimulationCycleGetter = _no_simulation_cycle,
    root_level: LogLevel = WARNING,
    stdout_handler_level: LogLevel = DEBUG,
) -> None:
    """Start a fresh log: forget written headers, drop handlers and restore default levels.

    :param add_stdout_handler: Whether entries are also echoed to stdout.
    :param simulation_cycle_getter: Zero-argument function returning the cycle entries are
        stamped with.
    :param root_level: Level of the `bcsim` root logger.
    :param stdout_handler_level: Level of the stdout handler.
    """
    global _get_simulation_cycle
    _get_simulation_cycle = simulation_cycle_getter
    _headers.clear()
    for logger in _loggers.values():
        logger.handlers = []
        logger.setLevel(_DEFAULT_LEVEL)

    root = getLogger(ROOT_LOGGER_NAME)
    root.setLevel(root_level)
    if add_stdout_handler:
        handler = _logging.StreamHandler(sys.stdout)
        handler.setLevel(stdout_handler_level)
        handler.setFormatter(_FORMATTER)
        root.addHandler(handler)


def reset() -> None:
    """Close all handlers and go back to the state before :py:func:`initialise`."""
    global _get_simulation_cycle
    _get_simulation_cycle = _no_simulation_cycle
    _headers.clear()
    for logger in _loggers.values():
        for handler in logger.handlers:
            handler.close()
        logger.handlers = []
        logger.setLevel(_DEFAULT_LEVEL)


def set_output_file(log_path: Path) -> _logging.FileHandler:
    """Write log entries to ``log_path``, replacing any earlier output file."""
    file_handler = _logging.FileHandler(log_path)
    file_handler.setFormatter(_FORMATTER)
    root = getLogger(ROOT_LOGGER_NAME)
    root.handlers = [h for h in root.handlers if not isinstance(h, _logging.FileHandler)]
    root.addHandler(file_handler)
    return file_handler


def set_logging_levels(custom_levels: Dict[str, LogLevel]) -> None:
    """Set levels of bcsim loggers.

    A logger takes the level of its own name or of its nearest ancestor named in
    ``custom_levels``; ``'*'`` gives the level for every other logger below `bcsim`.
    """
    for name in custom_levels:
        if name != "*":
            getLogger(name)

    for name, logger in _loggers.items():
        if name == ROOT_LOGGER_NAME:
            continue
        parts = name.split(".")
        for end in range(len(parts), 1, -1):
            ancestor = ".".join(parts[:end])
            if ancestor in custom_levels:
                logger.setLevel(custom_levels[ancestor])
                break
        else:
            if "*" in custom_levels:
                logger.setLevel(custom_levels["*"])


def disable(level: LogLevel) -> None:
    """Disable all logging calls of ``level`` and below."""
    _logging.disable(level)


def getLogger(name: str = ROOT_LOGGER_NAME) -> Logger:
    """Return the bcsim logger called ``name``, creating it on first use."""
    if name not in _loggers:
        _loggers[name] = Logger(name)
    return _loggers[name]


def _as_record(data: LogData) -> dict:
    """Logged data as a column name to plain Python value mapping."""
    if isinstance(data, str):
        return {"message": data}
    if isinstance(data, dict):
        return {
            str(column): value.item() if isinstance(value, np.generic) else value
            for column, value in data.items()
        }
    raise ValueError(f"Only dicts and strings can be logged, not {type(data).__name__}")


class Logger:
    """A named bcsim logger writing structured entries through a standard library logger."""

    HASH_LEN = 10

    def __init__(self, name: str, level: LogLevel = _DEFAULT_LEVEL) -> None:
        assert name == ROOT_LOGGER_NAME or name.startswith(
            f"{ROOT_LOGGER_NAME}."
        ), f"Only logging of bcsim modules is allowed; name is {name}"
        self._std_logger = _logging.getLogger(name)
        self._std_logger.setLevel(level)
        if name == ROOT_LOGGER_NAME:
            self._std_logger.propagate = False

    def __repr__(self) -> str:
        return f"<bcsim Logger `{self.name}` ({_logging.getLevelName(self.level)})>"

    @property
    def name(self) -> str:
        return self._std_logger.name

    @property
    def level(self) -> LogLevel:
        return self._std_logger.level

    @property
    def handlers(self) -> List[_logging.Handler]:
        return self._std_logger.handlers

    @handlers.setter
    def handlers(self, handlers: List[_logging.Handler]) -> None:
        self._std_logger.handlers = list(handlers)

    def addHandler(self, handler: _logging.Handler) -> None:
        self._std_logger.addHandler(handler)

    def setLevel(self, level: LogLevel) -> None:
        self._std_logger.setLevel(level)

    def _header(self, level: LogLevel, key: str, columns: dict, description: Optional[str]) -> Tuple[str, Optional[str]]:
        """uuid for ``key``, and the header line when none has been written yet."""
        written = _headers.get((self.name, key))
        if written is not None:
            uuid, header_columns = written
            if columns != header_columns:
                raise InconsistentLoggedColumnsError(
                    f"{self.name} logged {key} with columns {columns}; "
                    f"its header has {header_columns}"
                )
            return uuid, None

        uuid = hashlib.md5(f"{self.name}+{key}".encode()).hexdigest()[: Logger.HASH_LEN]
        _headers[(self.name, key)] = (uuid, columns)
        header = {
            "uuid": uuid,
            "type": "header",
            "module": self.name,
            "key": key,
            "level": _logging.getLevelName(level),
            "columns": columns,
            "description": description,
        }
        return uuid, json.dumps(header)

    def log(self, level: LogLevel, key: str, data: LogData, description: Optional[str] = None) -> None:
        """Log ``data`` under ``key``; every entry for a key must have the same columns."""
        if not self._std_logger.isEnabledFor(level):
            return
        record = _as_record(data)
        columns = {column: type(value).__name__ for column, value in record.items()}
        uuid, header = self._header(level, key, columns, description)
        row = json.dumps(
            {"uuid": uuid, "cycle": _get_simulation_cycle(), "values": list(record.values())},
            cls=NumpyEncoder,
        )
        self._std_logger.log(level, row if header is None else f"{header}\n{row}")

    critical = partialmethod(log, CRITICAL)
    debug = partialmethod(log, DEBUG)
    info = partialmethod(log, INFO)
    warning = partialmethod(log, WARNING)
