# shutterbox/core/log.py
# Logger tree rooted at "shutterbox"; modules use logging.getLogger(__name__).

from __future__ import annotations
import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER_NAME = "shutterbox"


class EnsureContext(logging.Filter):
    """Guarantee the fields the file formatter references."""
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        # Default file_token to run_id unless the log call overrides it
        if not hasattr(record, "file_token"):
            record.file_token = record.run_id
        return True


class MaxLevelFilter(logging.Filter):
    """Allow records up to and including `levelno` (drop anything higher)."""
    def __init__(self, levelno: int) -> None:
        super().__init__()
        self.levelno = levelno

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.levelno


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "run_id": getattr(record, "run_id", None),
            "file_token": getattr(record, "file_token", None),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RunLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges per-call extra (file_token) with the run context."""
    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def run_logger(run_id: str, name: str = LOGGER_NAME) -> logging.LoggerAdapter:
    """Attach run_id to every log record of one operation."""
    return RunLoggerAdapter(logging.getLogger(name), {"run_id": run_id})


def setup_logging(logs_dir: Optional[Path], *, verbose: int = 0, quiet: bool = False,
                  log_level: Optional[str] = None, json_logs: bool = False) -> logging.Logger:
    """
    Console/File matrix:
      - -q:   console = errors only;   file = INFO+
      - none: console = INFO only;     file = INFO+ (INFO & WARNING & ERROR)
      - -v:   console = INFO+;         file = INFO+
      - -vv:  console = DEBUG;         file = DEBUG
      - --log-level=X: both console & file use X (no special filters)
    logs_dir=None disables the file handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    console_max: Optional[logging.Filter] = None
    if log_level:
        console_level = getattr(logging, log_level.upper())
        file_level = console_level
    elif quiet:
        console_level = logging.ERROR
        file_level = logging.INFO
    elif verbose >= 2:
        console_level = logging.DEBUG
        file_level = logging.DEBUG
    elif verbose >= 1:
        console_level = logging.INFO
        file_level = logging.INFO
    else:
        # default: console shows INFO and ERROR (hide WARNING chatter); file keeps everything INFO+
        console_level = logging.INFO
        file_level = logging.INFO
        console_max = _DropWarnings()

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.addFilter(EnsureContext())
    if console_max:
        ch.addFilter(console_max)
    ch.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(ch)

    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = logs_dir / "shutterbox.log"
        fh = logging.handlers.TimedRotatingFileHandler(
            log_path, when="midnight", backupCount=14, encoding="utf-8"
        )
        fh.setLevel(file_level)
        fh.addFilter(EnsureContext())
        if json_logs:
            fh.setFormatter(JsonFormatter())
        else:
            fh.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] [%(run_id)s:%(file_token)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S"
            ))
        logger.addHandler(fh)
        logger.debug("Log file: %s", log_path)

    return logger


class _DropWarnings(MaxLevelFilter):
    """INFO and below, plus ERROR and above; WARNING goes to the file only."""
    def __init__(self) -> None:
        super().__init__(logging.INFO)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.levelno or record.levelno >= logging.ERROR
