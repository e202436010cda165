# aiclient/logging_config.py
from __future__ import annotations
import logging, logging.handlers, sys, traceback
from pathlib import Path
from datetime import datetime
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_FILENAME

# Third-party loggers that chatter at INFO/DEBUG on every request
NOISY_LOGGERS = ("urllib3", "requests", "httpx", "httpcore", "openai", "keyring")


class _ConsoleFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET = "\x1b[0m"

    def __init__(self, stream=None):
        super().__init__()
        stream = stream or sys.stderr
        self._colour = bool(getattr(stream, "isatty", None) and stream.isatty())

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).isoformat(timespec="seconds")
        line = f"{stamp} | {record.levelname:<8} | {record.name} | {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        colour = self.COLORS.get(record.levelname) if self._colour else None
        return f"{colour}{line}{self.RESET}" if colour else line


class _FileFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s | %(levelname)s | %(name)s | %(message)s", "%Y-%m-%d %H:%M:%S")


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter, level: int) -> None:
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)


def init_logging(log_dir: Path, level: str = "INFO", log_name: str = DEFAULT_LOG_FILENAME,
                 max_bytes: int = DEFAULT_LOG_MAX_BYTES, backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
                 also_console: bool = True) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_name
    lvl = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    # re-init replaces earlier handlers
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(lvl)

    _attach(root, logging.handlers.RotatingFileHandler(str(log_path), maxBytes=max_bytes,
                                                       backupCount=backup_count, encoding="utf-8",
                                                       delay=True),
            _FileFormatter(), lvl)
    # stdout carries streamed replies, so the console log goes to stderr
    if also_console:
        _attach(root, logging.StreamHandler(sys.stderr), _ConsoleFormatter(sys.stderr), lvl)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    install_excepthook()

    logging.getLogger(__name__).info("Logging initialized → %s", log_path)
    return log_path


def install_excepthook():
    def _hook(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logging.getLogger("uncaught").error("Uncaught exception", exc_info=(exc_type, exc, tb))
        summary = "".join(traceback.format_exception_only(exc_type, exc)).strip()
        sys.stderr.write(f"\nFATAL: {summary}\n")
        sys.stderr.flush()
    sys.excepthook = _hook


def mask_secret(value: str | None) -> str:
    """API keys in logs show their last four characters only."""
    if not value:
        return "<unset>"
    if len(value) <= 8:
        return "****"
    return "****" + value[-4:]
