"""Log-file sink for the download sorter."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from download_sorter.config.models import LoggingSettings

PACKAGE_LOGGER = "download_sorter"
LOG_FILE_NAME = "download-sorter.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class LogSink:
    """Own a size-rotating file handler attached to the package logger.

    The sink is created by ``configure_logging`` and must be closed by its
    owner; closing detaches the handler and releases the file.
    """

    def __init__(
        self,
        path: Path,
        *,
        level: int = logging.INFO,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        logger_name: str = PACKAGE_LOGGER,
    ) -> None:
        self._path = path
        self._logger = logging.getLogger(logger_name)
        self._handler: Optional[logging.Handler] = None

        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self._logger.addHandler(handler)
        self._previous_level = self._logger.level
        if self._logger.level == logging.NOTSET or self._logger.level > level:
            self._logger.setLevel(level)
        self._handler = handler

    @property
    def path(self) -> Path:
        """Return the active log file path."""
        return self._path

    @property
    def closed(self) -> bool:
        """Return whether the sink has been closed."""
        return self._handler is None

    def flush(self) -> None:
        """Flush buffered records to disk."""
        if self._handler is not None:
            self._handler.flush()

    def close(self) -> None:
        """Detach and close the file handler; safe to call more than once."""
        handler = self._handler
        if handler is None:
            return
        self._handler = None
        self._logger.removeHandler(handler)
        self._logger.setLevel(self._previous_level)
        handler.close()

    def __enter__(self) -> "LogSink":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


def configure_logging(settings: LoggingSettings, log_dir: Path | str | None = None) -> LogSink:
    """Attach a rotating log file to the package logger.

    Args:
        settings: Logging section of the loaded configuration.
        log_dir: Directory override; defaults to ``settings.directory``.

    Returns:
        LogSink: Sink owning the file handler.
    """
    directory = Path(log_dir if log_dir is not None else settings.directory).expanduser()
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    return LogSink(
        directory / LOG_FILE_NAME,
        level=level,
        max_bytes=max(1, settings.max_size_mb) * 1024 * 1024,
        backup_count=max(0, settings.backup_count),
    )


__all__ = ["LOG_FILE_NAME", "LogSink", "configure_logging"]
