import json
import logging
import os
import sys

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_CRON_LOG = "grocery-sync.log"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    fmt = "[%(asctime)s] [%(levelname)s] "
    if with_name:
        fmt += "%(name)s "
    return logging.Formatter(fmt + "%(message)s", datefmt=DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "cli" logs to stderr; "cron" logs to a file only, for
            unattended scheduled syncs.
        debug: If True, overrides LOG_LEVEL to DEBUG.
        log_file: Log file path (overrides LOG_FILE env var).  In "cli"
            mode the file is written in addition to stderr.
        debug_format: "text" (default) or "json" for structured output.
        level: Level from the config file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: WARNING for cron mode, INFO for CLI mode.
        LOG_FILE: Log file path for cron mode.
                  Default: grocery-sync.log in the working directory.
    """
    default_level = "WARNING" if mode == "cron" else "INFO"
    env_level = os.getenv("LOG_LEVEL", level or default_level).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if mode == "cron":
        path = log_file or os.getenv("LOG_FILE", DEFAULT_CRON_LOG)
        handler: logging.Handler = logging.FileHandler(path, mode="a")
        handler.setFormatter(_formatter(debug_format, with_name=True))
        handlers.append(handler)
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_formatter(debug_format, with_name=False))
        handlers.append(handler)
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(
                _formatter(debug_format, with_name=True)
            )
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
