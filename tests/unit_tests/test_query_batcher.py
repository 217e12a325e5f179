import asyncio

import pytest

from chainstate.core.address_codec import AddressCodec
from chainstate.core.errors import (
    ChainConnectionError,
    DecodeFailed,
    MalformedRemoteResponse,
    UnmatchedResponseEntry,
)
from chainstate.core.query_batcher import (
    QueryBatcher,
    SubscriptionHandle,
    group_by_network,
)
from chainstate.core.types import StateQuery

ADDRESS_A = b"\xaa" * 4
ADDRESS_B = b"\xbb" * 4
ADDRESS_C = b"\xcc" * 4
ADDRESS_D = b"\xdd" * 4


def key(address: bytes) -> str:
    return "0x" + address.hex()


def response(*changes):
    return [{"block": "0x01", "changes": [list(change) for change in changes]}]


@pytest.fixture
def queries(make_query):
    return [
        make_query("net1", ADDRESS_A, "A"),
        make_query("net2", ADDRESS_C, "C"),
        make_query("net1", ADDRESS_B, "B"),
    ]


@pytest.fixture
def subscriptions(mocker, fake_transport):
    """Records the notification handler and unsubscribe mock of every network."""
    registered = {}

    async def subscribe(
        network_id, subscribe_method, notification_method, params, callback, timeout
    ):
        unsubscribe = mocker.AsyncMock()
        registered[network_id] = (callback, unsubscribe)
        return unsubscribe

    fake_transport.subscribe.side_effect = subscribe
    return registered


def test_group_by_network(queries):
    """Tests queries are partitioned by network in their original order."""
    grouped = group_by_network(queries)

    assert list(grouped) == ["net1", "net2"]
    assert [query.address for query in grouped["net1"]] == [ADDRESS_A, ADDRESS_B]
    assert [query.address for query in grouped["net2"]] == [ADDRESS_C]


def test_queries_are_copied(fake_transport, queries):
    """Tests the batcher keeps its own copy of the queries."""
    batcher = QueryBatcher(fake_transport, queries)
    queries.clear()

    assert len(batcher.queries) == 3


@pytest.mark.asyncio
async def test_fetch_one_call_per_network(fake_transport, queries):
    """Tests every network is queried once with all of its addresses."""
    # Preps
    responses = {
        "net1": response((key(ADDRESS_B), "0x02"), (key(ADDRESS_A), "0x01")),
        "net2": response((key(ADDRESS_C), "0x03")),
    }
    fake_transport.send.side_effect = lambda network_id, method, params: responses[
        network_id
    ]
    batcher = QueryBatcher(fake_transport, queries)

    # Call
    result = await batcher.fetch()

    # Asserts
    assert fake_transport.send.await_count == 2
    fake_transport.send.assert_any_await(
        "net1", "state_queryStorageAt", [[key(ADDRESS_A), key(ADDRESS_B)]]
    )
    fake_transport.send.assert_any_await(
        "net2", "state_queryStorageAt", [[key(ADDRESS_C)]]
    )
    assert result == [("A", b"\x01"), ("B", b"\x02"), ("C", b"\x03")]
    assert len(batcher.diagnostics) == 0


@pytest.mark.asyncio
async def test_fetch_empty_values(fake_transport, make_query):
    """Tests null values are handed to decode as None and missing entries are left out."""
    # Preps
    fake_transport.send.return_value = response((key(ADDRESS_B), None))
    batcher = QueryBatcher(
        fake_transport,
        [make_query("net1", ADDRESS_A, "A"), make_query("net1", ADDRESS_B, "B")],
    )

    # Call
    result = await batcher.fetch()

    # Asserts
    assert result == [("B", None)]


@pytest.mark.asyncio
async def test_fetch_without_queries(fake_transport):
    """Tests nothing is sent without queries."""
    result = await QueryBatcher(fake_transport, []).fetch()

    assert result == []
    fake_transport.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_fetch_custom_method(fake_transport, make_query):
    """Tests the RPC method can be overridden per call and by config."""
    # Preps
    fake_transport.send.return_value = response()
    config = QueryBatcher.config()
    config.query.fetch_method = "state_queryStorage"
    batcher = QueryBatcher(fake_transport, [make_query("net1", ADDRESS_A)], config=config)

    # Call
    await batcher.fetch()
    await batcher.fetch(method="custom_queryStorage")

    # Asserts
    assert [call.args[1] for call in fake_transport.send.await_args_list] == [
        "state_queryStorage",
        "custom_queryStorage",
    ]


@pytest.mark.asyncio
async def test_fetch_unmatched_entry(fake_transport, make_query):
    """Tests entries nobody asked for are dropped and diagnosed."""
    # Preps
    fake_transport.send.return_value = response(
        (key(ADDRESS_D), "0x04"), (key(ADDRESS_A), "0x01")
    )
    batcher = QueryBatcher(fake_transport, [make_query("net1", ADDRESS_A, "A")])

    # Call
    result = await batcher.fetch()

    # Asserts
    assert result == [("A", b"\x01")]
    assert len(batcher.diagnostics) == 1
    assert isinstance(batcher.diagnostics[0], UnmatchedResponseEntry)
    assert key(ADDRESS_D) in str(batcher.diagnostics[0])


@pytest.mark.asyncio
async def test_fetch_malformed_entries(fake_transport, make_query):
    """Tests malformed entries are skipped while the rest is delivered."""
    # Preps
    fake_transport.send.return_value = [
        {
            "block": "0x01",
            "changes": [
                [123, "0x01"],
                [key(ADDRESS_A), 5],
                [key(ADDRESS_A), "0xzz"],
                "junk",
                [key(ADDRESS_B)],
                [key(ADDRESS_B), "0x02"],
            ],
        }
    ]
    batcher = QueryBatcher(
        fake_transport,
        [make_query("net1", ADDRESS_A, "A"), make_query("net1", ADDRESS_B, "B")],
    )

    # Call
    result = await batcher.fetch()

    # Asserts
    assert result == [("B", b"\x02")]
    assert len(batcher.diagnostics) == 5
    assert all(
        isinstance(diagnostic, MalformedRemoteResponse)
        for diagnostic in batcher.diagnostics
    )


@pytest.mark.parametrize("remote_response", [None, [], {"changes": []}, [{"block": "0x01"}]])
@pytest.mark.asyncio
async def test_fetch_malformed_response(fake_transport, make_query, remote_response):
    """Tests responses of the wrong shape yield no results for the network."""
    fake_transport.send.return_value = remote_response
    batcher = QueryBatcher(fake_transport, [make_query("net1", ADDRESS_A)])

    result = await batcher.fetch()

    assert result == []
    assert isinstance(batcher.diagnostics[0], MalformedRemoteResponse)


@pytest.mark.asyncio
async def test_fetch_fails_with_network(fake_transport, queries):
    """Tests a failing network fails the whole fetch once every call has finished."""
    # Preps
    error = ChainConnectionError("net2 is down")

    async def send(network_id, method, params):
        if network_id == "net2":
            raise error
        await asyncio.sleep(0)
        return response((key(ADDRESS_A), "0x01"))

    fake_transport.send.side_effect = send
    batcher = QueryBatcher(fake_transport, queries)

    # Call
    with pytest.raises(ChainConnectionError) as exc_info:
        await batcher.fetch()

    # Asserts
    assert exc_info.value is error
    assert fake_transport.send.await_count == 2


@pytest.mark.asyncio
async def test_fetch_decode_failure(fake_transport, make_query, mocker):
    """Tests decode errors surface from fetch."""
    # Preps
    query = make_query("net1", ADDRESS_A)
    query = StateQuery(
        network_id=query.network_id,
        address=query.address,
        decode=mocker.Mock(side_effect=DecodeFailed("System", "Number", "too short")),
    )
    fake_transport.send.return_value = response((key(ADDRESS_A), "0x01"))

    # Call / Asserts
    with pytest.raises(DecodeFailed):
        await QueryBatcher(fake_transport, [query]).fetch()


@pytest.mark.asyncio
async def test_fetch_duplicate_addresses(fake_transport, make_query):
    """Tests an address asked twice is requested once and delivered to both queries."""
    # Preps
    fake_transport.send.return_value = response((key(ADDRESS_A), "0x01"))
    batcher = QueryBatcher(
        fake_transport,
        [make_query("net1", ADDRESS_A, "first"), make_query("net1", ADDRESS_A, "second")],
    )

    # Call
    result = await batcher.fetch()

    # Asserts
    fake_transport.send.assert_awaited_once_with(
        "net1", "state_queryStorageAt", [[key(ADDRESS_A)]]
    )
    assert result == [("first", b"\x01"), ("second", b"\x01")]


@pytest.mark.asyncio
async def test_subscribe(fake_transport, queries, subscriptions, mocker):
    """Tests one subscription per network and per notification callbacks."""
    # Preps
    callback = mocker.Mock()
    batcher = QueryBatcher(fake_transport, queries)

    # Call
    handle = await batcher.subscribe(callback)
    networks = await handle.wait_registered()

    # Asserts
    assert isinstance(handle, SubscriptionHandle)
    assert networks == ["net1", "net2"]
    assert fake_transport.subscribe.await_count == 2
    net1_call = fake_transport.subscribe.await_args_list[0]
    assert net1_call.args[:4] == (
        "net1",
        "state_subscribeStorage",
        "state_storage",
        [[key(ADDRESS_A), key(ADDRESS_B)]],
    )
    assert net1_call.args[5] is None

    on_net1, _ = subscriptions["net1"]
    on_net1(None, {"block": "0x02", "changes": [[key(ADDRESS_B), "0x02"]]})
    callback.assert_called_once_with(None, [("B", b"\x02")])


@pytest.mark.asyncio
async def test_subscribe_network_error_isolated(
    fake_transport, queries, subscriptions, mocker
):
    """Tests an error on one network does not stop the others."""
    # Preps
    callback = mocker.Mock()
    handle = await QueryBatcher(fake_transport, queries).subscribe(callback)
    await handle.wait_registered()
    on_net1, _ = subscriptions["net1"]
    on_net2, _ = subscriptions["net2"]
    error = ChainConnectionError("net2 lost")

    # Call
    on_net2(error, None)
    on_net1(None, {"block": "0x02", "changes": [[key(ADDRESS_A), "0x01"]]})

    # Asserts
    assert callback.call_args_list == [
        mocker.call(error, None),
        mocker.call(None, [("A", b"\x01")]),
    ]


@pytest.mark.asyncio
async def test_subscribe_registration_failure(fake_transport, queries, mocker):
    """Tests a failed registration is reported while other networks stay subscribed."""
    # Preps
    error = ChainConnectionError("refused")
    unsubscribe = mocker.AsyncMock()

    async def subscribe(network_id, *args):
        if network_id == "net2":
            raise error
        return unsubscribe

    fake_transport.subscribe.side_effect = subscribe
    callback = mocker.Mock()

    # Call
    handle = await QueryBatcher(fake_transport, queries).subscribe(callback, timeout=5)
    networks = await handle.wait_registered()
    handle()
    await handle.wait_closed()

    # Asserts
    assert networks == ["net1"]
    callback.assert_called_once_with(error, None)
    unsubscribe.assert_awaited_once_with("state_unsubscribeStorage")
    assert fake_transport.subscribe.await_args_list[0].args[5] == 5


@pytest.mark.asyncio
async def test_subscribe_decode_failure(fake_transport, make_query, subscriptions, mocker):
    """Tests decode errors are reported through the callback."""
    # Preps
    query = make_query("net1", ADDRESS_A)
    error = DecodeFailed("System", "Number", "too short")
    query = StateQuery(
        network_id=query.network_id,
        address=query.address,
        decode=mocker.Mock(side_effect=error),
    )
    callback = mocker.Mock()
    handle = await QueryBatcher(fake_transport, [query]).subscribe(callback)
    await handle.wait_registered()

    # Call
    subscriptions["net1"][0](None, {"changes": [[key(ADDRESS_A), "0x01"]]})

    # Asserts
    callback.assert_called_once_with(error, None)


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(fake_transport, queries, subscriptions, mocker):
    """Tests the handle tears every network down once and silences callbacks."""
    # Preps
    callback = mocker.Mock()
    handle = await QueryBatcher(fake_transport, queries).subscribe(callback)
    await handle.wait_registered()

    # Call
    handle()
    handle()
    await handle.wait_closed()
    subscriptions["net1"][0](None, {"changes": [[key(ADDRESS_A), "0x01"]]})

    # Asserts
    assert handle.cancelled is True
    for _, unsubscribe in subscriptions.values():
        unsubscribe.assert_awaited_once_with("state_unsubscribeStorage")
    callback.assert_not_called()


@pytest.mark.asyncio
async def test_unsubscribe_before_registration(fake_transport, queries, subscriptions, mocker):
    """Tests cancelling right away drops the registrations that have not started."""
    # Preps
    callback = mocker.Mock()
    handle = await QueryBatcher(fake_transport, queries).subscribe(callback)

    # Call
    handle()
    await handle.wait_closed()

    # Asserts
    fake_transport.subscribe.assert_not_awaited()
    assert subscriptions == {}
    assert await handle.wait_registered() == []
    callback.assert_not_called()


@pytest.mark.asyncio
async def test_unsubscribe_while_registration_hangs(fake_transport, make_query, mocker):
    """Tests closing does not wait for a subscription request that never gets an answer."""
    # Preps
    never = asyncio.Event()
    started = asyncio.Event()

    async def subscribe(*args):
        started.set()
        await never.wait()

    fake_transport.subscribe.side_effect = subscribe
    callback = mocker.Mock()
    handle = await QueryBatcher(fake_transport, [make_query("net1", ADDRESS_A)]).subscribe(
        callback
    )
    await asyncio.wait_for(started.wait(), 1)

    # Call
    handle()
    await asyncio.wait_for(handle.wait_closed(), 1)

    # Asserts
    fake_transport.subscribe.assert_awaited_once()
    assert await handle.wait_registered() == []
    callback.assert_not_called()


@pytest.mark.asyncio
async def test_unsubscribe_failure_is_logged(fake_transport, make_query, mocker):
    """Tests a failing unsubscribe does not raise out of the teardown."""
    # Preps
    unsubscribe = mocker.AsyncMock(side_effect=ChainConnectionError("closed"))
    fake_transport.subscribe.return_value = unsubscribe
    mocked_warning = mocker.patch("chainstate.core.query_batcher.logging.warning")
    handle = await QueryBatcher(fake_transport, [make_query("net1", ADDRESS_A)]).subscribe(
        mocker.Mock(), unsubscribe_method="custom_unsubscribe"
    )

    await handle.wait_registered()

    # Call
    handle()
    await handle.wait_closed()

    # Asserts
    unsubscribe.assert_awaited_once_with("custom_unsubscribe")
    mocked_warning.assert_called_once()


@pytest.mark.asyncio
async def test_fetch_codec_queries(fake_transport, registry):
    """Tests address codecs of several networks decode their own values."""
    # Preps
    total = AddressCodec(registry, "System", "Number")
    balance = AddressCodec(registry, "System", "Account", 1)
    lock = AddressCodec(registry, "Balances", "Locks", 1)
    missing = AddressCodec(registry, "Staking", "Ledger")
    queries = [
        codec.as_query(network_id)
        for codec, network_id in (
            (total, "polkadot"),
            (balance, "kusama"),
            (lock, "polkadot"),
            (missing, "polkadot"),
        )
    ]
    responses = {
        "polkadot": response((lock.state_key, None), (total.state_key, "0x2a000000")),
        "kusama": response((balance.state_key, "0x" + "01" + "00" * 15)),
    }
    fake_transport.send.side_effect = lambda network_id, method, params: responses[
        network_id
    ]

    # Call
    batcher = QueryBatcher(fake_transport, [query for query in queries if query])
    result = await batcher.fetch()

    # Asserts
    assert queries[3] is None
    assert result == [42, None, 1]
