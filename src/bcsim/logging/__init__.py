from .core import (
    CRITICAL,
    DEBUG,
    FATAL,
    INFO,
    WARNING,
    disable,
    getLogger,
    initialise,
    reset,
    set_logging_levels,
    set_output_file,
)

__all__ = [
    "CRITICAL", "DEBUG", "FATAL", "INFO", "WARNING",
    "disable", "getLogger", "initialise", "reset", "set_logging_levels", "set_output_file",
]
