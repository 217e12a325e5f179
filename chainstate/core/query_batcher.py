"""
Batching of storage queries across networks.

N queries against M networks become exactly M remote operations: one ``state_queryStorageAt`` call (or one
``state_subscribeStorage`` subscription) per network. Every response is split back into its ``[address, value]``
changes and each change is handed to the query that asked for that address.

Example:
    batcher = QueryBatcher(connector, [codec.as_query(network_id) for codec, network_id in requests])
    balances = await batcher.fetch()

    handle = await batcher.subscribe(lambda error, results: print(error or results))
    ...
    handle()
"""

import argparse
import asyncio
from collections import defaultdict, deque
from typing import Any, Generic, Iterable, Optional

from chainstate.core.config import Config
from chainstate.core.errors import (
    ChainQueryError,
    MalformedRemoteResponse,
    UnmatchedResponseEntry,
)
from chainstate.core.settings import DEFAULTS, MAX_DIAGNOSTICS
from chainstate.core.types import (
    NetworkId,
    StateQuery,
    SubscriptionCallback,
    T,
    Transport,
    Unsubscribe,
)
from chainstate.utils import hex_to_bytes, is_hex_string
from chainstate.utils.btlogging import logging

QueryBatch = dict[NetworkId, list[StateQuery]]


def group_by_network(queries: Iterable[StateQuery]) -> QueryBatch:
    """Partitions queries by network, keeping their relative order inside each network."""
    grouped: QueryBatch = {}
    for query in queries:
        grouped.setdefault(query.network_id, []).append(query)
    return grouped


class SubscriptionHandle:
    """
    Cancellation token of a :meth:`QueryBatcher.subscribe` registration.

    Calling the handle schedules the teardown of every per-network subscription and returns straight away. Registrations
    still in flight are cancelled, the rest are unsubscribed. Only the first call has an effect.
    """

    def __init__(
        self,
        registrations: dict[NetworkId, "asyncio.Task[Optional[Unsubscribe]]"],
        unsubscribe_method: str,
    ):
        self._registrations = registrations
        self._unsubscribe_method = unsubscribe_method
        self._teardowns: list[asyncio.Task] = []
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def networks(self) -> list[NetworkId]:
        return list(self._registrations)

    def __call__(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        for registration in self._registrations.values():
            if not registration.done():
                registration.cancel()
        self._teardowns = [
            asyncio.ensure_future(self._teardown(network_id, registration))
            for network_id, registration in self._registrations.items()
        ]

    async def _teardown(
        self, network_id: NetworkId, registration: "asyncio.Task[Optional[Unsubscribe]]"
    ) -> None:
        try:
            unsubscribe = await registration
        except asyncio.CancelledError:
            if registration.cancelled():
                logging.debug(f"Subscription to {network_id} cancelled before it was registered")
                return
            raise
        if unsubscribe is None:
            return
        try:
            await unsubscribe(self._unsubscribe_method)
        except Exception as e:
            logging.warning(f"Failed to unsubscribe from {network_id}: {e}")

    async def wait_registered(self) -> list[NetworkId]:
        """Waits for every registration to settle and returns the networks that were subscribed successfully."""
        if not self._registrations:
            return []
        unsubscribes = await asyncio.gather(
            *self._registrations.values(), return_exceptions=True
        )
        return [
            network_id
            for network_id, unsubscribe in zip(self._registrations, unsubscribes)
            if callable(unsubscribe)
        ]

    async def wait_closed(self) -> None:
        """Waits until every scheduled teardown has finished."""
        if self._teardowns:
            await asyncio.gather(*self._teardowns)


class QueryBatcher(Generic[T]):
    """
    Issues the storage queries of many networks with one remote operation per network.

    Parameters:
        transport: network layer, typically a :class:`chainstate.ChainConnector`.
        queries: the queries to batch. The batcher keeps its own immutable copy.
        config: configuration with a ``query`` section, see :meth:`add_args`. Defaults to ``DEFAULTS``.
    """

    def __init__(
        self,
        transport: Transport,
        queries: Iterable[StateQuery[T]],
        config: Optional["Config"] = None,
    ):
        self._transport = transport
        self._settings = (config or DEFAULTS).query or DEFAULTS.query
        self._queries: tuple[StateQuery[T], ...] = tuple(queries)
        self.diagnostics: deque[ChainQueryError] = deque(maxlen=MAX_DIAGNOSTICS)

    @property
    def queries(self) -> tuple[StateQuery[T], ...]:
        return self._queries

    @staticmethod
    def _params(queries: list[StateQuery]) -> list[list[str]]:
        # identical addresses are requested once, the change is fanned out to each of them
        return [list(dict.fromkeys(query.state_key for query in queries))]

    async def fetch(self, method: Optional[str] = None) -> list[T]:
        """
        Reads every query once.

        Parameters:
            method: RPC method taking a list of storage keys, ``state_queryStorageAt`` by default.

        Returns:
            The decoded values, network after network, in query order inside each network. Queries without a value
            in the response are left out.

        Raises:
            DecodeFailed: if the value of a requested address cannot be decoded.
            Exception: whatever the transport raised for a failing network. The whole fetch fails then, after every
                other network call has finished.
        """
        method = method or self._settings.fetch_method
        grouped = group_by_network(self._queries)

        async def fetch_network(network_id: NetworkId, queries: list[StateQuery[T]]):
            response = await self._transport.send(
                network_id, method, self._params(queries)
            )
            if not isinstance(response, list) or not response:
                self._diagnose(
                    MalformedRemoteResponse(
                        f"Expected a non-empty list from {method} on {network_id}, got {response!r}"
                    )
                )
                return []
            return self._distribute_changes(network_id, queries, response[0])

        outcomes = await asyncio.gather(
            *[fetch_network(network_id, queries) for network_id, queries in grouped.items()],
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        return [result for results in outcomes for result in results]

    async def subscribe(
        self,
        callback: SubscriptionCallback[list[T]],
        timeout: Optional[float] = None,
        subscribe_method: Optional[str] = None,
        response_method: Optional[str] = None,
        unsubscribe_method: Optional[str] = None,
    ) -> SubscriptionHandle:
        """
        Subscribes to changes of every query.

        ``callback(None, results)`` is called once per notification with the decoded values of that notification
        only. ``callback(error, None)`` reports an error of one network (transport failure, failed registration or a
        value that cannot be decoded); subscriptions of the other networks carry on.

        Parameters:
            callback: receives ``(error, results)``.
            timeout: seconds the transport may wait for each registration, ``None`` to wait forever.
            subscribe_method: subscription RPC method, ``state_subscribeStorage`` by default.
            response_method: notification method name, ``state_storage`` by default.
            unsubscribe_method: RPC method tearing a subscription down, ``state_unsubscribeStorage`` by default.

        Returns:
            A :class:`SubscriptionHandle`; call it to unsubscribe from every network.
        """
        subscribe_method = subscribe_method or self._settings.subscribe_method
        response_method = response_method or self._settings.response_method
        unsubscribe_method = unsubscribe_method or self._settings.unsubscribe_method
        timeout = timeout if timeout is not None else self._settings.timeout
        grouped = group_by_network(self._queries)

        handle: Optional[SubscriptionHandle] = None

        def on_notification(network_id: NetworkId, queries: list[StateQuery[T]]):
            def handler(error: Optional[Exception], result: Any = None) -> None:
                if handle is not None and handle.cancelled:
                    return
                if error is not None:
                    callback(error, None)
                    return
                try:
                    results = self._distribute_changes(network_id, queries, result)
                except Exception as e:
                    callback(e, None)
                    return
                callback(None, results)

            return handler

        async def register(
            network_id: NetworkId, queries: list[StateQuery[T]]
        ) -> Optional[Unsubscribe]:
            try:
                return await self._transport.subscribe(
                    network_id,
                    subscribe_method,
                    response_method,
                    self._params(queries),
                    on_notification(network_id, queries),
                    timeout,
                )
            except Exception as e:
                logging.warning(f"Failed to subscribe to {network_id}: {e}")
                callback(e, None)
                return None

        registrations = {
            network_id: asyncio.ensure_future(register(network_id, queries))
            for network_id, queries in grouped.items()
        }
        handle = SubscriptionHandle(registrations, unsubscribe_method)
        return handle

    def _diagnose(self, diagnostic: ChainQueryError) -> None:
        self.diagnostics.append(diagnostic)
        logging.warning(str(diagnostic))

    def _distribute_changes(
        self, network_id: NetworkId, queries: list[StateQuery[T]], result: Any
    ) -> list[T]:
        """
        Hands every ``[address, value]`` change of ``result`` to the queries of ``network_id`` asking for it.

        Entries that are malformed or were not asked for are skipped and recorded in :attr:`diagnostics`.
        """
        changes = result.get("changes") if isinstance(result, dict) else None
        if not isinstance(changes, list):
            self._diagnose(
                MalformedRemoteResponse(
                    f"Received a result without changes from {network_id}: {result!r}"
                )
            )
            return []

        positions: dict[bytes, list[int]] = defaultdict(list)
        for position, query in enumerate(queries):
            positions[query.address].append(position)

        decoded: dict[int, T] = {}
        for change in changes:
            if not isinstance(change, (list, tuple)) or len(change) != 2:
                self._diagnose(
                    MalformedRemoteResponse(
                        f"Received a malformed change from {network_id}: {change!r}"
                    )
                )
                continue

            reference, value = change
            if not is_hex_string(reference):
                self._diagnose(
                    MalformedRemoteResponse(
                        f"Received non-hex reference from {network_id}: {reference!r}"
                    )
                )
                continue
            if value is not None and not is_hex_string(value):
                self._diagnose(
                    MalformedRemoteResponse(
                        f"Received non-hex and non-null change from {network_id}: {reference} | {value!r}"
                    )
                )
                continue

            matches = positions.get(hex_to_bytes(reference))
            if not matches:
                self._diagnose(
                    UnmatchedResponseEntry(
                        f"Failed to find query for {reference} on {network_id}"
                    )
                )
                continue

            raw = None if value is None else hex_to_bytes(value)
            for position in matches:
                decoded[position] = queries[position].decode(raw)

        return [decoded[position] for position in sorted(decoded)]

    @classmethod
    def add_args(cls, parser: argparse.ArgumentParser, prefix: str = None):
        """Accept specific arguments from parser"""
        prefix_str = "" if prefix is None else prefix + "."
        try:
            parser.add_argument(
                "--" + prefix_str + "query.fetch_method",
                type=str,
                help="RPC method used to read a batch of storage keys.",
                default=DEFAULTS.query.fetch_method,
            )
            parser.add_argument(
                "--" + prefix_str + "query.subscribe_method",
                type=str,
                help="RPC method used to subscribe to a batch of storage keys.",
                default=DEFAULTS.query.subscribe_method,
            )
            parser.add_argument(
                "--" + prefix_str + "query.response_method",
                type=str,
                help="Name of the storage change notifications.",
                default=DEFAULTS.query.response_method,
            )
            parser.add_argument(
                "--" + prefix_str + "query.unsubscribe_method",
                type=str,
                help="RPC method used to drop a storage subscription.",
                default=DEFAULTS.query.unsubscribe_method,
            )
            parser.add_argument(
                "--" + prefix_str + "query.timeout",
                type=float,
                help="Seconds to wait for a subscription to be registered.",
                default=DEFAULTS.query.timeout,
            )
        except argparse.ArgumentError:
            # re-parsing arguments.
            pass

    @classmethod
    def config(cls) -> "Config":
        parser = argparse.ArgumentParser()
        cls.add_args(parser)
        return Config(parser, args=[])
