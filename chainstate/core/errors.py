from typing import Optional

from async_substrate_interface.errors import SubstrateRequestException

__all__ = [
    "AddressDerivationFailed",
    "ChainConnectionError",
    "ChainError",
    "ChainQueryError",
    "DecodeFailed",
    "MalformedRemoteResponse",
    "MetadataUnavailable",
    "SubstrateRequestException",
    "UnmatchedResponseEntry",
]


class ChainError(SubstrateRequestException):
    """Base error for any chain related errors."""


class ChainConnectionError(ChainError):
    """Error for any chain connection related errors."""


class ChainQueryError(ChainError):
    """Error for any storage query related errors."""


class MetadataUnavailable(ChainQueryError):
    """The metadata registry cannot be interpreted for its metadata version."""


class AddressDerivationFailed(ChainQueryError):
    """A storage address could not be built for the requested module, method and parameters."""


class DecodeFailed(ChainQueryError):
    """A raw storage value could not be decoded into the declared value type."""

    def __init__(
        self, module: Optional[str], method: Optional[str], detail: str = ""
    ):
        self.module = module
        self.method = method
        self.detail = detail
        super().__init__(
            f"Unable to decode storage {module or 'unknown'}.{method or 'unknown'}: {detail}"
        )


class MalformedRemoteResponse(ChainQueryError):
    """A remote response, or an entry of it, does not have the expected shape."""


class UnmatchedResponseEntry(ChainQueryError):
    """A response entry refers to a storage address that no query asked for."""
