"""
btlogging.format module

Log record formatters for the stream and file handlers of chainstate, plus the custom TRACE level.
"""

import logging
import time
from typing import Optional

from colorama import Back, Fore, Style, init

init(wrap=False)

TRACE_LEVEL_NUM: int = 5


def _trace(self, message: str, *args, **kws):
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kws)


logging.TRACE = TRACE_LEVEL_NUM
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")
logging.Logger.trace = _trace


log_level_color_prefix: dict[int, str] = {
    logging.NOTSET: Fore.RESET,
    logging.TRACE: Fore.MAGENTA,
    logging.DEBUG: Fore.BLUE,
    logging.INFO: Fore.WHITE,
    logging.WARNING: Fore.YELLOW,
    logging.ERROR: Fore.RED,
    logging.CRITICAL: Back.RED,
}

LOG_FORMATS: dict[int, str] = {
    level: f"{Fore.BLUE}%(asctime)s{Fore.RESET} | {Style.BRIGHT}{color}%(levelname)s{Style.RESET_ALL} | %(message)s"
    for level, color in log_level_color_prefix.items()
}

LOG_TRACE_FORMATS: dict[int, str] = {
    level: f"{Fore.BLUE}%(asctime)s{Fore.RESET}"
    f" | {Style.BRIGHT}{color}%(levelname)s{Style.RESET_ALL}"
    f" | %(name)s:%(filename)s:%(lineno)s"
    f" | %(message)s"
    for level, color in log_level_color_prefix.items()
}


def _format_time(formatter: logging.Formatter, record, datefmt: Optional[str]) -> str:
    created = formatter.converter(record.created)
    s = time.strftime(datefmt or "%Y-%m-%d %H:%M:%S", created)
    return s + f".{int(record.msecs):03d}"


class CsStreamFormatter(logging.Formatter):
    """Colored console formatter; in trace mode every record also carries its origin."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.trace = False

    def formatTime(self, record, datefmt: Optional[str] = None) -> str:
        return _format_time(self, record, datefmt)

    def format(self, record: "logging.LogRecord") -> str:
        format_orig = self._style._fmt
        record.levelname = f"{record.levelname:^8}"

        formats = LOG_TRACE_FORMATS if self.trace else LOG_FORMATS
        self._style._fmt = formats.get(record.levelno, formats[logging.NOTSET])

        result = super().format(record)
        self._style._fmt = format_orig
        return result

    def set_trace(self, state: bool = True):
        self.trace = state


class CsFileFormatter(logging.Formatter):
    """Plain formatter for the rotating log file."""

    def formatTime(self, record, datefmt: Optional[str] = None) -> str:
        return _format_time(self, record, datefmt)

    def format(self, record: "logging.LogRecord") -> str:
        record.levelname = f"{record.levelname:^10}"
        return super().format(record)
