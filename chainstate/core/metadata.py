"""
Read-only view over a network's runtime metadata.

A :class:`MetadataRegistry` pairs a ``scalecodec`` runtime configuration (which knows how to encode and decode every
type of the runtime) with the decoded ``MetadataVersioned`` object (which describes every storage item). It is built
once per network connection and runtime version and shared by any number of :class:`AddressCodec` instances.
"""

from dataclasses import dataclass
from typing import Optional, Union

from async_substrate_interface.utils import hex_to_bytes
from scalecodec.base import RuntimeConfigurationObject, ScaleBytes
from scalecodec.type_registry import load_type_registry_preset

from chainstate.core.errors import AddressDerivationFailed, MetadataUnavailable
from chainstate.core.settings import TYPE_REGISTRY


@dataclass(frozen=True)
class StorageItem:
    """Binary layout of a single storage item, as declared by the metadata."""

    module: str
    method: str
    prefix: str
    key_types: tuple[str, ...]
    hashers: tuple[str, ...]
    value_type: Optional[str]
    default: bytes
    modifier: str

    @property
    def is_optional(self) -> bool:
        """Items without the ``Default`` modifier have no value until one is written."""
        return self.modifier != "Default"

    @property
    def is_map(self) -> bool:
        return len(self.key_types) > 0


class MetadataRegistry:
    """
    Storage item lookup for one network at one runtime version.

    Parameters:
        runtime_config: scalecodec runtime configuration with the network types registered.
        metadata: decoded ``MetadataVersioned`` scale object of the network.
        spec_version: runtime spec version the metadata belongs to, informational.
    """

    def __init__(
        self,
        runtime_config: RuntimeConfigurationObject,
        metadata,
        spec_version: Optional[int] = None,
    ):
        self.runtime_config = runtime_config
        self.metadata = metadata
        self.spec_version = spec_version

    @classmethod
    def from_scale_bytes(
        cls,
        data: Union[bytes, str],
        spec_version: Optional[int] = None,
        type_registry: Optional[dict] = None,
    ) -> "MetadataRegistry":
        """
        Decodes raw ``MetadataVersioned`` bytes, as returned by the ``state_getMetadata`` RPC call.

        Parameters:
            data: SCALE encoded metadata, raw bytes or a ``0x`` prefixed hex string.
            spec_version: runtime spec version the metadata belongs to.
            type_registry: additional type definitions for pre-V14 runtimes.

        Returns:
            A ready to use registry.

        Raises:
            MetadataUnavailable: if the metadata cannot be decoded.
        """
        runtime_config = RuntimeConfigurationObject()
        runtime_config.update_type_registry(load_type_registry_preset(name="core"))
        runtime_config.update_type_registry(TYPE_REGISTRY)

        try:
            metadata = runtime_config.create_scale_object(
                "MetadataVersioned", data=ScaleBytes(data)
            )
            metadata.decode()
        except Exception as e:
            raise MetadataUnavailable(f"Failed to decode metadata: {e}") from e

        if metadata.portable_registry is not None:
            runtime_config.add_portable_registry(metadata)
        else:
            # Runtimes older than V14 describe types by name only.
            runtime_config.update_type_registry(
                load_type_registry_preset(name="legacy")
            )
        if type_registry:
            runtime_config.update_type_registry(type_registry)

        return cls(runtime_config, metadata, spec_version=spec_version)

    def _get_pallet(self, module: str):
        if self.metadata is None:
            raise MetadataUnavailable(
                f"No metadata loaded for spec version {self.spec_version}"
            )
        try:
            return self.metadata.get_metadata_pallet(module)
        except (AttributeError, NotImplementedError, TypeError, KeyError) as e:
            raise MetadataUnavailable(
                f"Metadata for spec version {self.spec_version} cannot be interpreted: {e}"
            ) from e

    def storage_item(self, module: str, method: str) -> StorageItem:
        """
        Describes the storage item ``module.method``.

        Raises:
            MetadataUnavailable: if the metadata cannot be read at all.
            AddressDerivationFailed: if the pallet or the storage item does not exist.
        """
        pallet = self._get_pallet(module)
        try:
            return self._describe(pallet, module, method)
        except (
            AttributeError,
            IndexError,
            KeyError,
            NotImplementedError,
            TypeError,
            ValueError,
        ) as e:
            raise MetadataUnavailable(
                f"Storage {module}.{method} cannot be read from metadata of spec version {self.spec_version}: {e!r}"
            ) from e

    @staticmethod
    def _describe(pallet, module: str, method: str) -> StorageItem:
        if not pallet:
            raise AddressDerivationFailed(f'Pallet "{module}" not found')

        storage = pallet.value.get("storage")
        if not storage:
            raise AddressDerivationFailed(f'Pallet "{module}" has no storage')

        storage_function = pallet.get_storage_function(method)
        if not storage_function:
            raise AddressDerivationFailed(
                f'Storage function "{module}.{method}" not found'
            )

        try:
            value_type = storage_function.get_value_type_string()
        except (AttributeError, NotImplementedError, KeyError, ValueError):
            value_type = None

        default = storage_function.value_object["default"].value_object
        if isinstance(default, str):
            default = hex_to_bytes(default)
        return StorageItem(
            module=module,
            method=method,
            prefix=storage["prefix"],
            key_types=tuple(storage_function.get_params_type_string()),
            hashers=tuple(storage_function.get_param_hashers()),
            value_type=value_type,
            default=bytes(default or b""),
            modifier=storage_function.value["modifier"],
        )
