import datetime
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import LOG_LEVEL, LOG_TIMEZONE


_LOGGING_CONFIGURED = False


class LocalTimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone.

    Falls back to the system local timezone when LOG_TIMEZONE is unset or
    names an unknown zone.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = self._resolve_tzinfo(timezone_name)

    @staticmethod
    def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
        if timezone_name:
            try:
                return ZoneInfo(timezone_name)
            except ZoneInfoNotFoundError:
                pass
        return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


def setup_logging(level: str | None = None) -> None:
    """Attach a console handler to the root logger once per process."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    level_name = level or LOG_LEVEL
    level_value = getattr(logging, str(level_name).upper(), logging.INFO)

    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        timezone_name=LOG_TIMEZONE,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    logging.getLogger("amica").setLevel(level_value)

    # uvicorn may already have installed a console handler
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level_value, logging.WARNING))

    _LOGGING_CONFIGURED = True


logger = logging.getLogger("amica")
