"""
Flat import surface of chainstate, re-exported by the top level package.
"""

from chainstate.core import settings
from chainstate.core.address_codec import AddressCodec
from chainstate.core.chain_connector import ChainConnector
from chainstate.core.config import Config, InvalidConfigFile
from chainstate.core.errors import (
    AddressDerivationFailed,
    ChainConnectionError,
    ChainError,
    ChainQueryError,
    DecodeFailed,
    MalformedRemoteResponse,
    MetadataUnavailable,
    SubstrateRequestException,
    UnmatchedResponseEntry,
)
from chainstate.core.metadata import MetadataRegistry, StorageItem
from chainstate.core.query_batcher import (
    QueryBatcher,
    SubscriptionHandle,
    group_by_network,
)
from chainstate.core.types import (
    NetworkId,
    StateQuery,
    StorageValueKind,
    SubscriptionCallback,
    Transport,
)
from chainstate.utils.btlogging import logging


# Logging helpers.
def trace(on: bool = True):
    """
    Enables or disables trace logging.

    Parameters:
        on: If True, enables trace logging. If False, disables trace logging.
    """
    logging.set_trace(on)


def debug(on: bool = True):
    """
    Enables or disables debug logging.

    Parameters:
        on: If True, enables debug logging. If False, disables debug logging.
    """
    logging.set_debug(on)


def info(on: bool = True):
    """
    Enables or disables info logging.

    Parameters:
        on: If True, enables info logging. If False, disables info logging and sets default (WARNING) level.
    """
    logging.set_info(on)


__all__ = [
    "settings",
    "AddressCodec",
    "ChainConnector",
    "Config",
    "InvalidConfigFile",
    "AddressDerivationFailed",
    "ChainConnectionError",
    "ChainError",
    "ChainQueryError",
    "DecodeFailed",
    "MalformedRemoteResponse",
    "MetadataUnavailable",
    "SubstrateRequestException",
    "UnmatchedResponseEntry",
    "MetadataRegistry",
    "StorageItem",
    "QueryBatcher",
    "SubscriptionHandle",
    "group_by_network",
    "NetworkId",
    "StateQuery",
    "StorageValueKind",
    "SubscriptionCallback",
    "Transport",
    "logging",
    "trace",
    "debug",
    "info",
]
