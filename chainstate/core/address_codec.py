"""
Storage address derivation and storage value decoding.

Example:
    registry = MetadataRegistry.from_scale_bytes(metadata_hex)
    codec = AddressCodec(registry, "System", "Account", "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY")
    codec.tag({"token": "DOT"})

    query = codec.as_query("polkadot")
    # ... fetch through a QueryBatcher, the raw value comes back into ``codec.decode``
"""

from typing import Any, Optional, Union

from scalecodec.base import ScaleBytes

from chainstate.core.errors import (
    AddressDerivationFailed,
    ChainQueryError,
    DecodeFailed,
    MetadataUnavailable,
)
from chainstate.core.metadata import MetadataRegistry, StorageItem
from chainstate.core.types import NetworkId, StateQuery, StorageValueKind
from chainstate.utils.btlogging import logging
from chainstate.utils.substrate_utils.storage import create_storage_key


class AddressCodec:
    """
    Encodes one storage request into its storage address and decodes the raw values read from it.

    The address is derived eagerly. When the metadata cannot be interpreted, or the storage item does not exist, or
    the parameters do not fit its keys, the failure is logged and kept in :attr:`error`; the codec stays usable with
    an ``address`` of ``None`` and decodes everything to ``None``.

    Parameters:
        registry: metadata registry of the network the storage lives on.
        module: pallet name, e.g. ``"System"``.
        method: storage item name, e.g. ``"Account"``.
        parameters: map keys of the storage item, in declaration order.
    """

    def __init__(
        self, registry: MetadataRegistry, module: str, method: str, *parameters: Any
    ):
        self._registry = registry
        self._module = module
        self._method = method
        self._parameters = parameters

        self.tags: Any = None
        self.error: Optional[ChainQueryError] = None

        self._item: Optional[StorageItem] = None
        self._address: Optional[bytes] = None
        self._kind = StorageValueKind.RAW_FALLBACK

        try:
            self._item = registry.storage_item(module, method)
        except ChainQueryError as e:
            logging.debug(
                f"Failed to describe storage {module or 'unknown'}.{method or 'unknown'}: {e}"
            )
            self.error = e
            return
        except Exception as e:
            logging.debug(
                f"Failed to read metadata of {module or 'unknown'}.{method or 'unknown'}: {e}"
            )
            self.error = MetadataUnavailable(str(e))
            return

        try:
            self._address = create_storage_key(
                self._item, parameters, registry.runtime_config
            )
        except Exception as e:
            logging.debug(
                f"Failed to create storage key {module or 'unknown'}.{method or 'unknown'}: {e}"
            )
            self.error = AddressDerivationFailed(str(e))
            return

        if self._item.value_type is None:
            self._kind = StorageValueKind.RAW_FALLBACK
        elif self._item.is_optional:
            self._kind = StorageValueKind.OPTIONAL
        else:
            self._kind = StorageValueKind.REQUIRED

    def __repr__(self):
        return f"<AddressCodec(module={self._module}, method={self._method}, parameters={list(self._parameters)})>"

    @property
    def address(self) -> Optional[bytes]:
        """Raw storage address, ``None`` when it could not be derived."""
        return self._address

    @property
    def state_key(self) -> Optional[str]:
        """Hex string form of :attr:`address`, as used on the wire."""
        if self._address is None:
            return None
        return f"0x{self._address.hex()}"

    @property
    def module(self) -> str:
        return self._module

    @property
    def method(self) -> str:
        return self._method

    @property
    def parameters(self) -> tuple:
        return self._parameters

    @property
    def kind(self) -> StorageValueKind:
        return self._kind

    def tag(self, tags: Any) -> "AddressCodec":
        """Attaches caller data to the codec, e.g. what the query stands for. Returns the codec itself."""
        self.tags = tags
        return self

    def as_query(self, network_id: NetworkId) -> Optional[StateQuery]:
        """Wraps the codec into a :class:`StateQuery` for ``network_id``, ``None`` without an address."""
        if self._address is None:
            return None
        return StateQuery(network_id=network_id, address=self._address, decode=self.decode)

    def decode(self, raw: Optional[Union[bytes, str]] = None) -> Any:
        """
        Decodes a raw storage value read at :attr:`address`.

        Parameters:
            raw: SCALE encoded value as bytes or ``0x`` hex string, ``None`` when the storage cell is empty.

        Returns:
            The decoded python value, or ``None`` when there is no address or no value.

        Raises:
            DecodeFailed: if ``raw`` is not a valid encoding of the declared value type.
        """
        if self._address is None or raw is None:
            return None

        if self._kind is StorageValueKind.RAW_FALLBACK:
            return self._to_bytes(raw)

        # For optional items the presence of ``raw`` is the option itself, what is left is the inner value.
        return self._decode_value(self._item.value_type, raw)

    def fallback(self) -> Any:
        """
        Decodes the metadata default of the storage item, which is what the chain reports for never written cells.

        Returns ``None`` for optional items and when the address is unavailable.
        """
        if self._address is None or self._kind is not StorageValueKind.REQUIRED:
            return None
        return self._decode_value(self._item.value_type, self._item.default)

    def _to_bytes(self, raw: Union[bytes, str]) -> bytes:
        try:
            return bytes(ScaleBytes(raw).data)
        except (ValueError, TypeError) as e:
            raise DecodeFailed(self._module, self._method, str(e)) from e

    def _decode_value(self, type_string: str, raw: Union[bytes, str]) -> Any:
        try:
            scale_obj = self._registry.runtime_config.create_scale_object(
                type_string=type_string,
                data=ScaleBytes(raw),
                metadata=self._registry.metadata,
            )
            scale_obj.decode(check_remaining=True)
        except Exception as e:
            raise DecodeFailed(self._module, self._method, str(e)) from e
        return scale_obj.value
