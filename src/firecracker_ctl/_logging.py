"""Logging setup shared by every firecracker_ctl module.

Modules call get_logger(__name__) and attach guest context through
``extra=``, e.g. ``extra={"guest": name, "operation": "start"}``. Nothing
is printed unless the embedding application configures handlers, or the
fcctl CLI calls configure_logging().

CLI lines carry the context after the message:

    WARNING [2026-02-25 10:02:54] firecracker_ctl.lifecycle - Guest operation failed guest=d1 operation=start error='...'

FIRECRACKER_CTL_LOG_LEVEL (DEBUG, INFO, ...) is read once at import.
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "firecracker_ctl"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())


def _level_from_env() -> int | None:
    name = os.environ.get("FIRECRACKER_CTL_LOG_LEVEL", "").strip().upper()
    value = logging.getLevelNamesMapping().get(name)
    return value or None  # NOTSET means "inherit"


if (_env_level := _level_from_env()) is not None:
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)

# Attributes every LogRecord has; anything else came from extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Rendered first, in this order; other extra keys follow alphabetically
_LEADING_KEYS = ("guest", "operation", "pid", "state")

# Records waiting for the CLI writer thread; overflow is dropped
_PENDING_RECORDS = 4096


def _render_value(value: object) -> str:
    text = str(value)
    if not text or any(ch.isspace() or ch in "='\"" for ch in text):
        return repr(text)
    return text


class ContextFormatter(logging.Formatter):
    """Formatter that appends the record's extra= fields as key=value pairs."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(levelname)s [%(asctime)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        if not context:
            return line
        keys = [k for k in _LEADING_KEYS if k in context]
        keys += sorted(k for k in context if k not in _LEADING_KEYS)
        fields = " ".join(f"{k}={_render_value(context[k])}" for k in keys)

        # Tracebacks stay below the context, not in front of it
        head, sep, tail = line.partition("\n")
        return f"{head} {fields}{sep}{tail}"


class _StderrWriter(logging.Handler):
    """Final stage on the listener thread: dimmed click.echo to stderr."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(ContextFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(click.style(self.format(record), dim=True), err=True)
        except BlockingIOError:
            pass  # stderr is full; the record is lost
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _QueuedCliHandler(logging.handlers.QueueHandler):
    """Hands records to a listener thread so event-loop code never waits on stderr."""

    def __init__(self) -> None:
        pending: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_PENDING_RECORDS)
        super().__init__(pending)
        self._listener = logging.handlers.QueueListener(pending, _StderrWriter(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Formatting happens on the listener, which needs the extra= fields intact
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__ so it nests under firecracker_ctl."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> None:
    """Send library records to stderr for the fcctl CLI.

    Calling it again only changes the level.

    Args:
        level: Level name or number; wins over FIRECRACKER_CTL_LOG_LEVEL
        quiet: Errors only, whatever level says
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    if not any(isinstance(h, _QueuedCliHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_QueuedCliHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
