import pytest
from scalecodec.base import RuntimeConfigurationObject
from scalecodec.type_registry import load_type_registry_preset

from chainstate.core.metadata import MetadataRegistry
from chainstate.core.types import NetworkId, StateQuery

# module -> method -> (key types, hashers, value type, modifier, default)
FAKE_PALLETS = {
    "System": {
        "Number": ([], [], "u32", "Default", "0x00000000"),
        "Account": (["u32"], ["Blake2_128Concat"], "u128", "Default", "0x" + "00" * 16),
        "Events": ([], [], None, "Default", "0x00"),
    },
    "Balances": {
        "Locks": (["u32"], ["Twox64Concat"], "u64", "Optional", "0x00"),
        "Pairs": (["u32", "u32"], ["Identity", "Twox64Concat"], "bool", "Optional", "0x00"),
    },
    "Timestamp": {},
}


@pytest.fixture
def runtime_config():
    config = RuntimeConfigurationObject()
    config.update_type_registry(load_type_registry_preset(name="core"))
    return config


def _fake_storage_function(mocker, key_types, hashers, value_type, modifier, default):
    storage_function = mocker.Mock()
    storage_function.get_params_type_string.return_value = key_types
    storage_function.get_param_hashers.return_value = hashers
    if value_type is None:
        storage_function.get_value_type_string.side_effect = NotImplementedError(
            "unsupported storage type"
        )
    else:
        storage_function.get_value_type_string.return_value = value_type
    storage_function.value = {"modifier": modifier}
    default_object = mocker.Mock()
    default_object.value_object = default
    storage_function.value_object = {"default": default_object}
    return storage_function


@pytest.fixture
def fake_metadata(mocker):
    """Mocked ``MetadataVersioned`` describing the ``FAKE_PALLETS`` storage items."""

    def get_metadata_pallet(module):
        if module not in FAKE_PALLETS:
            return None
        functions = FAKE_PALLETS[module]
        pallet = mocker.Mock()
        pallet.value = {"storage": {"prefix": module} if functions else None}
        pallet.get_storage_function.side_effect = lambda method: (
            _fake_storage_function(mocker, *functions[method])
            if method in functions
            else None
        )
        return pallet

    metadata = mocker.Mock()
    metadata.get_metadata_pallet.side_effect = get_metadata_pallet
    return metadata


@pytest.fixture
def registry(runtime_config, fake_metadata):
    return MetadataRegistry(runtime_config, fake_metadata, spec_version=1)


@pytest.fixture
def make_query():
    """Builds a query whose decode returns ``(name, raw)``."""

    def _make_query(network_id: str, address: bytes, name: str = None):
        return StateQuery(
            network_id=NetworkId(network_id),
            address=address,
            decode=lambda raw: (name or address.hex(), raw),
        )

    return _make_query


@pytest.fixture
def fake_transport(mocker):
    transport = mocker.Mock()
    transport.send = mocker.AsyncMock()
    transport.subscribe = mocker.AsyncMock()
    return transport
