"""Per-run log files and progress output."""

from collections.abc import Generator
from contextlib import contextmanager
import datetime
import logging
from pathlib import Path
import tempfile
from typing import TextIO

from .exceptions import RolloutException

__all__ = [
    "TIME_FORMAT",
    "log_file_name",
    "with_log_file",
    "write_progress",
]

_LOGGER = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
LOG_DIR_NAME = "kube-rollout"


def write_progress(out: TextIO | None, message: str) -> None:
    """Write a line of human readable progress, ignoring write failures."""
    if out is None:
        return
    try:
        out.write(message + "\n")
    except (OSError, ValueError) as err:
        _LOGGER.warning("Unable to write progress output: %s", err)


def log_file_name(now: datetime.datetime | None = None) -> str:
    """Return the name of the log file for a run started now."""
    now = now or datetime.datetime.now()
    return now.strftime(TIME_FORMAT) + ".log"


def default_log_dir() -> Path:
    """Return the directory holding the run log files."""
    return Path(tempfile.gettempdir()) / LOG_DIR_NAME


class TeeWriter:
    """Writes to the log file and to the caller's output stream."""

    def __init__(self, log_file: TextIO, out: TextIO | None) -> None:
        """Initialize TeeWriter."""
        self._log_file = log_file
        self._out = out

    def write(self, data: str) -> int:
        if self._out is not None:
            try:
                self._out.write(data)
            except (OSError, ValueError) as err:
                _LOGGER.warning("Unable to write output: %s", err)
        return self._log_file.write(data)

    def flush(self) -> None:
        self._log_file.flush()
        if self._out is not None:
            try:
                self._out.flush()
            except (OSError, ValueError) as err:
                _LOGGER.warning("Unable to flush output: %s", err)


@contextmanager
def with_log_file(
    filename: str,
    out: TextIO | None,
    muted: bool = False,
    log_dir: Path | None = None,
) -> Generator[TextIO, None, None]:
    """Open the log file for the duration of a pipeline stage.

    When muted the stage output only goes to the log file, otherwise it is also
    written to `out`. The log file is closed however the stage exits.
    """
    log_dir = log_dir or default_log_dir()
    path = log_dir / filename
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = path.open("a", encoding="utf-8")
    except OSError as err:
        raise RolloutException(f"Unable to create log file {path}: {err}") from err

    _LOGGER.debug("Writing logs to %s", path)
    try:
        if muted:
            write_progress(out, f" - writing logs to {path}")
            yield log_file
        else:
            yield TeeWriter(log_file, out)  # type: ignore[misc]
    finally:
        log_file.close()
