"""
btlogging sub-package standardized logging for chainstate.

Every module logs through the ``logging`` singleton defined here, so that levels, formatting and the optional log file
are controlled in a single place.
"""

from .loggingmachine import LoggingMachine


logging = LoggingMachine(LoggingMachine.config())
