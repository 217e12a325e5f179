from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    NewType,
    Optional,
    Protocol,
    TypeVar,
)

T = TypeVar("T")

# Identifier of a network, e.g. a genesis hash or a chain name. Queries are grouped by it.
NetworkId = NewType("NetworkId", str)

# callback(error, value). Exactly one of the two is not None.
SubscriptionCallback = Callable[[Optional[Exception], Optional[T]], None]

# Coroutine function tearing a transport subscription down, called with the unsubscribe RPC method name.
Unsubscribe = Callable[[str], Awaitable[Any]]


class StorageValueKind(Enum):
    """How the raw value of a storage item is decoded."""

    # Absence is a valid state; a present value is the declared type.
    OPTIONAL = "Optional"
    # The item always has a value (the metadata default when never written).
    REQUIRED = "Default"
    # The item could not be described; raw bytes are handed back untouched.
    RAW_FALLBACK = "Raw"


@dataclass(frozen=True)
class StateQuery(Generic[T]):
    """
    A single storage read routed through :class:`chainstate.QueryBatcher`.

    Attributes:
        network_id: network the address belongs to.
        address: raw storage address.
        decode: turns the raw value found at ``address`` (``None`` when there is none) into the result.
    """

    network_id: NetworkId
    address: bytes
    decode: Callable[[Optional[bytes]], T]

    @property
    def state_key(self) -> str:
        return f"0x{self.address.hex()}"


class Transport(Protocol):
    """What :class:`chainstate.QueryBatcher` needs from the network layer."""

    async def send(self, network_id: NetworkId, method: str, params: list) -> Any:
        """Issues one RPC call and returns its result."""
        ...

    async def subscribe(
        self,
        network_id: NetworkId,
        subscribe_method: str,
        notification_method: str,
        params: list,
        callback: SubscriptionCallback[Any],
        timeout: Optional[float] = None,
    ) -> Unsubscribe:
        """Registers a push subscription; ``callback`` receives every notification or transport error."""
        ...
