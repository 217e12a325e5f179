import os
import re
from pathlib import Path

from munch import munchify

__version__ = "0.1.0"

READ_ONLY = os.getenv("READ_ONLY") == "1"

HOME_DIR = Path.home()
USER_CHAINSTATE_DIR = HOME_DIR / ".chainstate"
LOGS_DIR = USER_CHAINSTATE_DIR / "logs"

# State RPC methods used for batched storage reads.
QUERY_STORAGE_AT_METHOD = "state_queryStorageAt"
SUBSCRIBE_STORAGE_METHOD = "state_subscribeStorage"
STORAGE_NOTIFICATION_METHOD = "state_storage"
UNSUBSCRIBE_STORAGE_METHOD = "state_unsubscribeStorage"

# Upper bound of diagnostics a single QueryBatcher keeps in memory.
MAX_DIAGNOSTICS = 256

# Notifications a connection buffers for subscription ids it does not know yet, per id and in ids.
MAX_EARLY_NOTIFICATIONS = 64
MAX_EARLY_SUBSCRIPTIONS = 64

# Hasher applied to a map key when metadata does not name one.
DEFAULT_KEY_HASHER = "Twox128"

# Extra type definitions applied on top of the `core` scalecodec preset.
TYPE_REGISTRY: dict[str, dict] = {
    "types": {},
}

_CS_QUERY_TIMEOUT = os.getenv("CS_QUERY_TIMEOUT")
_CS_CONNECTOR_MAX_SIZE = os.getenv("CS_CONNECTOR_MAX_SIZE")

DEFAULTS = munchify(
    {
        "logging": {
            "debug": bool(os.getenv("CS_LOGGING_DEBUG")) or False,
            "trace": bool(os.getenv("CS_LOGGING_TRACE")) or False,
            "info": bool(os.getenv("CS_LOGGING_INFO")) or False,
            "record_log": bool(os.getenv("CS_LOGGING_RECORD_LOG")) or False,
            "logging_dir": None
            if READ_ONLY
            else os.getenv("CS_LOGGING_LOGGING_DIR") or str(LOGS_DIR),
            "enable_third_party_loggers": bool(
                os.getenv("CS_LOGGING_ENABLE_THIRD_PARTY_LOGGERS")
            )
            or False,
        },
        "query": {
            "fetch_method": os.getenv("CS_QUERY_FETCH_METHOD")
            or QUERY_STORAGE_AT_METHOD,
            "subscribe_method": os.getenv("CS_QUERY_SUBSCRIBE_METHOD")
            or SUBSCRIBE_STORAGE_METHOD,
            "response_method": os.getenv("CS_QUERY_RESPONSE_METHOD")
            or STORAGE_NOTIFICATION_METHOD,
            "unsubscribe_method": os.getenv("CS_QUERY_UNSUBSCRIBE_METHOD")
            or UNSUBSCRIBE_STORAGE_METHOD,
            "timeout": float(_CS_QUERY_TIMEOUT) if _CS_QUERY_TIMEOUT else None,
        },
        "connector": {
            "max_size": int(_CS_CONNECTOR_MAX_SIZE)
            if _CS_CONNECTOR_MAX_SIZE
            else 2**32,
        },
        "config": False,
        "strict": False,
    }
)


# Parsing version without any literals.
__version__ = re.match(r"^\d+\.\d+\.\d+", __version__).group(0)

version_split = __version__.split(".")
