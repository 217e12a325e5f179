"""
JSON-RPC websocket transport for :class:`chainstate.QueryBatcher`.

One connection is opened lazily per network and shared by every call and subscription on that network. A single
reader task per connection routes replies to the request waiting for them and subscription notifications to their
subscriber.
"""

import argparse
import asyncio
import json
from collections import deque
from typing import Any, Callable, Optional

import websockets

from chainstate.core.config import Config
from chainstate.core.errors import ChainConnectionError, SubstrateRequestException
from chainstate.core.settings import (
    DEFAULTS,
    MAX_EARLY_NOTIFICATIONS,
    MAX_EARLY_SUBSCRIPTIONS,
)
from chainstate.core.types import NetworkId, SubscriptionCallback, Unsubscribe
from chainstate.utils import validate_chain_endpoint
from chainstate.utils.btlogging import logging


class Websocket:
    """
    A single websocket connection multiplexing requests and subscriptions.

    :param ws_url: Websocket URL to connect to
    :param options: extra keyword arguments for ``websockets.connect``
    """

    def __init__(self, ws_url: str, options: Optional[dict] = None):
        self.ws_url = ws_url
        self.ws = None
        self.id = 0
        self._options = options if options else {}
        self._lock = asyncio.Lock()
        self._receiving_task: Optional[asyncio.Task] = None
        self._responses: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, Callable[[Optional[Exception], Optional[dict]], None]] = {}
        # notifications that arrived before their subscriber was registered
        self._early_notifications: dict[str, deque] = {}
        self._removed_subscriptions: set[str] = set()

    @property
    def connected(self) -> bool:
        return self.ws is not None

    async def connect(self):
        async with self._lock:
            if self.ws is not None:
                return
            try:
                self.ws = await websockets.connect(self.ws_url, **self._options)
            except (OSError, websockets.WebSocketException) as e:
                raise ChainConnectionError(
                    f"Unable to connect to {self.ws_url}: {e}"
                ) from e
            self._receiving_task = asyncio.create_task(self._start_receiving())

    async def close(self):
        async with self._lock:
            if self._receiving_task:
                self._receiving_task.cancel()
                try:
                    await self._receiving_task
                except asyncio.CancelledError:
                    pass
                self._receiving_task = None
            if self.ws is not None:
                await self.ws.close()
                self.ws = None
            self._fail_pending(ChainConnectionError(f"Connection to {self.ws_url} closed"))

    @staticmethod
    def _notify(handler, error: Optional[Exception], notification: Optional[dict]) -> None:
        try:
            handler(error, notification)
        except Exception as e:
            logging.error(f"Subscription handler failed: {e!r}")

    def _buffer(self, subscription_id: str, notification: dict) -> None:
        if subscription_id in self._removed_subscriptions:
            return
        buffered = self._early_notifications.get(subscription_id)
        if buffered is None:
            if len(self._early_notifications) >= MAX_EARLY_SUBSCRIPTIONS:
                logging.debug(
                    f"Dropping notification for unknown subscription {subscription_id}"
                )
                return
            buffered = deque(maxlen=MAX_EARLY_NOTIFICATIONS)
            self._early_notifications[subscription_id] = buffered
        buffered.append(notification)

    def _route(self, response: Any) -> None:
        if not isinstance(response, dict):
            logging.warning(f"Unhandled websocket response: {response!r}")
        elif "id" in response:
            future = self._responses.pop(response["id"], None)
            if future is not None and not future.done():
                future.set_result(response)
        elif isinstance(response.get("params"), dict):
            subscription_id = response["params"].get("subscription")
            if not isinstance(subscription_id, (str, int)):
                logging.warning(f"Notification without subscription id: {response!r}")
                return
            subscription_id = str(subscription_id)
            handler = self._subscriptions.get(subscription_id)
            if handler is None:
                self._buffer(subscription_id, response)
            else:
                self._notify(handler, None, response)
        else:
            logging.warning(f"Unhandled websocket response: {response!r}")

    async def _start_receiving(self):
        try:
            while True:
                message = await self.ws.recv()
                try:
                    response = json.loads(message)
                except json.JSONDecodeError as e:
                    logging.warning(f"Undecodable message from {self.ws_url}: {e}")
                    continue
                self._route(response)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            logging.warning(f"Websocket {self.ws_url} stopped receiving: {e}")
            self.ws = None
            self._fail_pending(
                ChainConnectionError(f"Connection to {self.ws_url} lost: {e}")
            )
        except Exception as e:
            logging.error(f"Websocket {self.ws_url} reader failed: {e!r}")
            ws, self.ws = self.ws, None
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException):
                pass
            self._fail_pending(
                ChainConnectionError(f"Connection to {self.ws_url} failed: {e}")
            )

    def _fail_pending(self, error: Exception) -> None:
        for future in self._responses.values():
            if not future.done():
                future.set_exception(error)
        self._responses.clear()

        subscriptions, self._subscriptions = self._subscriptions, {}
        self._early_notifications.clear()
        for handler in subscriptions.values():
            self._notify(handler, error, None)

    async def request(
        self, method: str, params: list, timeout: Optional[float] = None
    ) -> Any:
        """
        Sends one JSON-RPC request and waits for its reply.

        :return: the ``result`` of the reply
        :raises SubstrateRequestException: if the node answers with an error
        """
        await self.connect()
        future = asyncio.get_running_loop().create_future()
        async with self._lock:
            if self.ws is None:
                raise ChainConnectionError(f"Connection to {self.ws_url} lost")
            request_id = self.id
            self.id += 1
            self._responses[request_id] = future
            try:
                await self.ws.send(
                    json.dumps(
                        {
                            "jsonrpc": "2.0",
                            "id": request_id,
                            "method": method,
                            "params": params,
                        }
                    )
                )
            except websockets.ConnectionClosed as e:
                self._responses.pop(request_id, None)
                raise ChainConnectionError(
                    f"Connection to {self.ws_url} lost: {e}"
                ) from e

        try:
            response = await asyncio.wait_for(future, timeout)
        finally:
            self._responses.pop(request_id, None)

        if "error" in response:
            error = response["error"]
            raise SubstrateRequestException(
                error.get("message", error) if isinstance(error, dict) else error
            )
        return response.get("result")

    def add_subscription(
        self,
        subscription_id: str,
        handler: Callable[[Optional[Exception], Optional[dict]], None],
    ) -> None:
        subscription_id = str(subscription_id)
        self._removed_subscriptions.discard(subscription_id)
        self._subscriptions[subscription_id] = handler
        for notification in self._early_notifications.pop(subscription_id, []):
            self._notify(handler, None, notification)

    def remove_subscription(self, subscription_id: str) -> None:
        subscription_id = str(subscription_id)
        self._subscriptions.pop(subscription_id, None)
        self._early_notifications.pop(subscription_id, None)
        # the node may keep pushing until the unsubscribe call is answered
        self._removed_subscriptions.add(subscription_id)


class ChainConnector:
    """
    Transport over JSON-RPC websockets, one endpoint per network.

    Parameters:
        endpoints: websocket url of every network, keyed by network id.
        config: configuration with a ``connector`` section, see :meth:`add_args`.
        request_timeout: seconds to wait for the reply of each request, ``None`` to wait forever.
    """

    def __init__(
        self,
        endpoints: dict[NetworkId, str],
        config: Optional["Config"] = None,
        request_timeout: Optional[float] = None,
    ):
        for network_id, endpoint in endpoints.items():
            is_valid, error = validate_chain_endpoint(endpoint)
            if not is_valid:
                raise ValueError(f"{network_id}: {error}")

        settings = (config or DEFAULTS).connector or DEFAULTS.connector
        self._endpoints = dict(endpoints)
        self._options = {"max_size": settings.max_size}
        self._request_timeout = request_timeout
        self._sockets: dict[NetworkId, Websocket] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def networks(self) -> list[NetworkId]:
        return list(self._endpoints)

    def _socket(self, network_id: NetworkId) -> Websocket:
        if network_id not in self._endpoints:
            raise ChainConnectionError(f"No endpoint configured for network {network_id}")
        if network_id not in self._sockets:
            self._sockets[network_id] = Websocket(
                self._endpoints[network_id], options=self._options
            )
        return self._sockets[network_id]

    async def send(
        self,
        network_id: NetworkId,
        method: str,
        params: list,
        timeout: Optional[float] = None,
    ) -> Any:
        """Calls ``method`` on ``network_id`` and returns the result."""
        logging.trace(f"{network_id}: {method}({params})")
        return await self._socket(network_id).request(
            method, params, timeout if timeout is not None else self._request_timeout
        )

    async def subscribe(
        self,
        network_id: NetworkId,
        subscribe_method: str,
        notification_method: str,
        params: list,
        callback: SubscriptionCallback[Any],
        timeout: Optional[float] = None,
    ) -> Unsubscribe:
        """
        Subscribes with ``subscribe_method`` and forwards every ``notification_method`` push to ``callback``.

        ``timeout`` bounds the wait for the subscription id only. Connection loss is reported to the callback as a
        :class:`ChainConnectionError`.

        Returns:
            Coroutine function taking the unsubscribe method name.
        """
        socket = self._socket(network_id)
        subscription_id = await socket.request(subscribe_method, params, timeout)
        logging.debug(f"{network_id}: subscribed with {subscribe_method} as {subscription_id}")

        def handler(error: Optional[Exception], notification: Optional[dict]) -> None:
            if error is not None:
                callback(error, None)
                return
            if notification.get("method") != notification_method:
                logging.debug(
                    f"{network_id}: ignoring {notification.get('method')} notification on {subscription_id}"
                )
                return
            notification_params = notification["params"]
            if "error" in notification_params:
                callback(SubstrateRequestException(notification_params["error"]), None)
                return
            callback(None, notification_params.get("result"))

        socket.add_subscription(subscription_id, handler)

        async def unsubscribe(unsubscribe_method: str) -> Any:
            socket.remove_subscription(subscription_id)
            if not socket.connected:
                return None
            return await socket.request(
                unsubscribe_method, [subscription_id], self._request_timeout
            )

        return unsubscribe

    async def close(self):
        """Closes every open connection."""
        await asyncio.gather(*[socket.close() for socket in self._sockets.values()])
        self._sockets.clear()

    @classmethod
    def add_args(cls, parser: argparse.ArgumentParser, prefix: str = None):
        """Accept specific arguments from parser"""
        prefix_str = "" if prefix is None else prefix + "."
        try:
            parser.add_argument(
                "--" + prefix_str + "connector.max_size",
                type=int,
                help="Largest websocket message accepted, in bytes.",
                default=DEFAULTS.connector.max_size,
            )
        except argparse.ArgumentError:
            # re-parsing arguments.
            pass
