"""
Logging state machine for chainstate.

The package logger moves between Default, Info, Debug, Trace and Disabled states through the ``python-statemachine``
package. Records are pushed onto a queue and published by a single listener to the stream handler and, when
``record_log`` is set, to a rotating log file.
"""

import argparse
import atexit
import logging as stdlogging
import os
import queue
import sys
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import NamedTuple, Optional, Union

from statemachine import State, StateMachine

from chainstate.core.config import Config
from chainstate.core.settings import DEFAULTS
from .defines import (
    CHAINSTATE_LOGGER_NAME,
    DATE_FORMAT,
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_FILE_NAME,
    DEFAULT_MAX_ROTATING_LOG_FILE_SIZE,
    TRACE_LOG_FORMAT,
)
from .format import CsFileFormatter, CsStreamFormatter
from .helpers import all_loggers

# https://github.com/python/cpython/issues/97941
CUSTOM_LOGGER_METHOD_STACK_LEVEL = 2 if sys.version_info >= (3, 11) else 1


def _concat_message(msg="", prefix="", suffix=""):
    """Joins prefix, message and suffix with `` - ``, skipping empty parts."""
    message_parts = [
        str(component).strip()
        for component in [prefix, msg, suffix]
        if component is not None and str(component).strip()
    ]
    return " - ".join(message_parts)


class LoggingConfig(NamedTuple):
    """Named tuple to hold the logging configuration."""

    debug: bool
    trace: bool
    info: bool
    record_log: bool
    logging_dir: Optional[str]
    enable_third_party_loggers: bool = False


class LoggingMachine(StateMachine, Logger):
    """Handles logger states for chainstate and 3rd party libraries."""

    Default = State(initial=True)
    Info = State()
    Debug = State()
    Trace = State()
    Disabled = State()

    enable_default = (
        Default.to(Default)
        | Info.to(Default)
        | Debug.to(Default)
        | Trace.to(Default)
        | Disabled.to(Default)
    )

    enable_info = (
        Default.to(Info)
        | Info.to(Info)
        | Debug.to(Info)
        | Trace.to(Info)
        | Disabled.to(Info)
    )

    enable_debug = (
        Default.to(Debug)
        | Info.to(Debug)
        | Debug.to(Debug)
        | Trace.to(Debug)
        | Disabled.to(Debug)
    )

    enable_trace = (
        Default.to(Trace)
        | Info.to(Trace)
        | Debug.to(Trace)
        | Trace.to(Trace)
        | Disabled.to(Trace)
    )

    disable_logging = (
        Default.to(Disabled)
        | Info.to(Disabled)
        | Debug.to(Disabled)
        | Trace.to(Disabled)
        | Disabled.to(Disabled)
    )

    def __init__(
        self,
        config: Union["Config", LoggingConfig],
        name: str = CHAINSTATE_LOGGER_NAME,
    ):
        StateMachine.__init__(self)
        stdlogging.Logger.__init__(self, name)
        self._queue = queue.Queue(-1)
        self._primary_loggers = {name}
        self._config = self._extract_logging_config(config)

        self._stream_formatter = CsStreamFormatter()
        self._file_formatter = CsFileFormatter(TRACE_LOG_FORMAT, DATE_FORMAT)

        self._handlers = self._configure_handlers(self._config)
        self._listener = QueueListener(
            self._queue, *self._handlers, respect_handler_level=True
        )
        self._listener.start()
        atexit.register(self._listener.stop)

        self._logger = stdlogging.getLogger(name)
        self._logger.addHandler(QueueHandler(self._queue))

        if self._config.enable_third_party_loggers:
            self.enable_third_party_loggers()

        if self._config.trace:
            self.enable_trace()
        elif self._config.debug:
            self.enable_debug()
        elif self._config.info:
            self.enable_info()
        else:
            self.enable_default()

    @staticmethod
    def _extract_logging_config(config) -> Union[LoggingConfig, "Config"]:
        """Accepts either a full chainstate config or its ``logging`` section."""
        if getattr(config, "logging", None):
            return config.logging
        return config

    def _configure_handlers(self, config) -> list[stdlogging.Handler]:
        stream_handler = stdlogging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(self._stream_formatter)
        handlers = [stream_handler]

        if config.record_log and config.logging_dir:
            logfile = os.path.abspath(
                os.path.join(
                    os.path.expanduser(config.logging_dir), DEFAULT_LOG_FILE_NAME
                )
            )
            os.makedirs(os.path.dirname(logfile), exist_ok=True)
            file_handler = RotatingFileHandler(
                logfile,
                maxBytes=DEFAULT_MAX_ROTATING_LOG_FILE_SIZE,
                backupCount=DEFAULT_LOG_BACKUP_COUNT,
            )
            file_handler.setFormatter(self._file_formatter)
            file_handler.setLevel(stdlogging.TRACE)
            handlers.append(file_handler)
        return handlers

    def get_config(self):
        return self._config

    def get_queue(self):
        return self._queue

    def enable_third_party_loggers(self):
        """Routes records of every other logger through the chainstate queue."""
        for logger in all_loggers():
            if logger.name in self._primary_loggers:
                continue
            logger.addHandler(QueueHandler(self._queue))
            logger.setLevel(self._logger.level)

    def _set_level(self, level: int):
        self._logger.setLevel(level)
        if self._config.enable_third_party_loggers:
            for logger in all_loggers():
                logger.setLevel(level)

    # state transitions
    def before_transition(self, event, state):
        self._listener.stop()

    def after_transition(self, event, state):
        self._listener.start()

    def before_enable_default(self):
        self._stream_formatter.set_trace(False)
        self._set_level(stdlogging.WARNING)

    def before_enable_info(self):
        self._stream_formatter.set_trace(False)
        self._set_level(stdlogging.INFO)

    def before_enable_debug(self):
        self._stream_formatter.set_trace(True)
        self._set_level(stdlogging.DEBUG)

    def before_enable_trace(self):
        self._stream_formatter.set_trace(True)
        self._set_level(stdlogging.TRACE)

    def before_disable_logging(self):
        self._stream_formatter.set_trace(False)
        self._set_level(stdlogging.CRITICAL)

    @property
    def __trace_on__(self) -> bool:
        return self.current_state_value == "Trace"

    def trace(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps trace message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.trace(
            msg,
            *args,
            **kwargs,
            stacklevel=stacklevel + CUSTOM_LOGGER_METHOD_STACK_LEVEL,
        )

    def debug(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps debug message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.debug(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def info(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps info message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.info(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def warning(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps warning message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.warning(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def error(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps error message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.error(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def critical(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps critical message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.critical(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def exception(self, msg="", prefix="", suffix="", *args, stacklevel=1, **kwargs):
        """Wraps exception message with prefix and suffix."""
        msg = _concat_message(msg, prefix, suffix)
        self._logger.exception(msg, *args, **kwargs, stacklevel=stacklevel + 1)

    def on(self):
        """Enable default state."""
        self.enable_default()

    def off(self):
        """Disables all states."""
        self.disable_logging()

    def set_debug(self, on: bool = True):
        if on:
            if self.current_state_value != "Debug":
                self.enable_debug()
        elif self.current_state_value == "Debug":
            self.enable_default()

    def set_trace(self, on: bool = True):
        if on:
            if self.current_state_value != "Trace":
                self.enable_trace()
        elif self.current_state_value == "Trace":
            self.enable_default()

    def set_info(self, on: bool = True):
        if on:
            if self.current_state_value != "Info":
                self.enable_info()
        elif self.current_state_value == "Info":
            self.enable_default()

    def get_level(self) -> int:
        return self._logger.level

    def setLevel(self, level):
        self._logger.setLevel(level)

    @classmethod
    def add_args(cls, parser: argparse.ArgumentParser, prefix: str = None):
        """Accept specific arguments from parser"""
        prefix_str = "" if prefix is None else prefix + "."
        try:
            parser.add_argument(
                "--" + prefix_str + "logging.debug",
                action="store_true",
                help="Turn on chainstate debugging information.",
                default=DEFAULTS.logging.debug,
            )
            parser.add_argument(
                "--" + prefix_str + "logging.trace",
                action="store_true",
                help="Turn on chainstate trace level information.",
                default=DEFAULTS.logging.trace,
            )
            parser.add_argument(
                "--" + prefix_str + "logging.info",
                action="store_true",
                help="Turn on chainstate info level information.",
                default=DEFAULTS.logging.info,
            )
            parser.add_argument(
                "--" + prefix_str + "logging.record_log",
                action="store_true",
                help="Turns on logging to file.",
                default=DEFAULTS.logging.record_log,
            )
            parser.add_argument(
                "--" + prefix_str + "logging.logging_dir",
                type=str,
                help="Logging default root directory.",
                default=DEFAULTS.logging.logging_dir,
            )
            parser.add_argument(
                "--" + prefix_str + "logging.enable_third_party_loggers",
                action="store_true",
                help="Enables logging for third-party loggers.",
                default=DEFAULTS.logging.enable_third_party_loggers,
            )
        except argparse.ArgumentError:
            # re-parsing arguments.
            pass

    @classmethod
    def config(cls) -> "Config":
        """Config built from the logging command line flags."""
        parser = argparse.ArgumentParser()
        cls.add_args(parser)
        return Config(parser, args=[])
