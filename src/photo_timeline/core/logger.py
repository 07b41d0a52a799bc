import logging
import sys
from pathlib import Path

from .settings import LoggingSettings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s – %(message)s"
LOG_FILENAME = "photo_timeline.log"
DEFAULT_LOG_DIR = Path.home() / ".photo_timeline"

# Pillow logs every format plugin it tries at DEBUG
_QUIET_LOGGERS = ("PIL",)


def configure_logging(settings: LoggingSettings | None = None, console_level: int | None = None) -> Path:
    """
    Route all loggers to a log file and stdout, and return the log file path.

    ``console_level`` (from the command line) wins over ``settings.console_level``.
    Rejected edits arrive as warnings, committed history changes at info level
    and transform details at debug level.
    """
    settings = settings or LoggingSettings()
    log_dir = settings.directory or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME

    formatter = logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S")

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(settings.file_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level if console_level is not None else settings.console_level)
    console_handler.setFormatter(formatter)

    root_level = min(file_handler.level, console_handler.level)
    logging.basicConfig(level=root_level, handlers=[file_handler, console_handler], force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.INFO, root_level))
    logging.getLogger(__name__).debug("Logdatei: %s", log_path)
    return log_path
