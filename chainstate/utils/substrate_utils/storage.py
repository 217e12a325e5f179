"""
Storage address construction.

Substrate keeps its whole state in a single key-value store. The key of a storage cell is
``Twox128(pallet prefix) + Twox128(storage name)`` followed, for maps, by every SCALE encoded map key passed through
the hasher the metadata declares for it.
"""

from typing import Any, Sequence

from scalecodec import ss58_decode
from scalecodec.base import RuntimeConfigurationObject, ScaleBytes, ScaleDecoder

from chainstate.core.metadata import StorageItem
from chainstate.core.settings import DEFAULT_KEY_HASHER
from chainstate.utils.substrate_utils.hasher import get_hasher, xxh128


def convert_storage_parameter(
    runtime_config: RuntimeConfigurationObject, scale_type: str, value: Any
) -> Any:
    """Normalises a python map key before encoding: raw bytes become hex, ss58 addresses become public keys."""
    if isinstance(value, (bytes, bytearray)):
        value = f"0x{bytes(value).hex()}"

    if scale_type in ("AccountId", "AccountId32") and isinstance(value, str):
        if value[0:2] != "0x":
            return "0x{}".format(ss58_decode(value, runtime_config.ss58_format))

    return value


def encode_storage_parameter(
    runtime_config: RuntimeConfigurationObject, scale_type: str, value: Any
) -> bytes:
    """SCALE encodes a single map key, passing already encoded values through."""
    if isinstance(value, ScaleBytes):
        return bytes(value.data)
    if isinstance(value, ScaleDecoder):
        return bytes(value.data.data)

    value = convert_storage_parameter(runtime_config, scale_type, value)
    scale_obj = runtime_config.create_scale_object(type_string=scale_type)
    return bytes(scale_obj.encode(value).data)


def storage_prefix(item: StorageItem) -> bytes:
    """Address shared by every cell of ``item``."""
    return xxh128(item.prefix.encode()) + xxh128(item.method.encode())


def create_storage_key(
    item: StorageItem,
    params: Sequence[Any],
    runtime_config: RuntimeConfigurationObject,
) -> bytes:
    """
    Builds the storage address of ``item`` for the given map keys.

    Parameters:
        item: storage item layout.
        params: one value per map key, in declaration order. Empty for plain storage values.
        runtime_config: runtime configuration used to encode the keys.

    Returns:
        The raw storage address.

    Raises:
        ValueError: if the number of params differs from the number of map keys, or a hasher is unknown.
    """
    params = list(params or [])
    if len(params) != len(item.key_types):
        raise ValueError(
            f"{item.module}.{item.method} expects {len(item.key_types)} key(s), got {len(params)}"
        )

    storage_hash = storage_prefix(item)
    for idx, param in enumerate(params):
        try:
            hasher_name = item.hashers[idx] or DEFAULT_KEY_HASHER
        except IndexError:
            raise ValueError(f"No hasher found for param #{idx + 1}") from None

        encoded = encode_storage_parameter(runtime_config, item.key_types[idx], param)
        storage_hash += get_hasher(hasher_name)(encoded)

    return bytes(storage_hash)
