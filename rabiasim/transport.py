"""Network transport interface and an in-memory bus implementation."""

from __future__ import annotations

import abc
import asyncio
from collections import deque
from collections.abc import Callable, Hashable, Iterable
from typing import Any

NodeId = Hashable
Bus = Callable[[Any, Any, Any], None]
Deliver = Callable[[Any, Any], None]

RECEIVE_IDLE_DELAY = 0.01


class NetworkError(Exception):
    """Raised when a message cannot be sent or received."""


class NetworkTransport(abc.ABC):
    """Message transport between the nodes of a cluster."""

    @abc.abstractmethod
    async def send_to(self, target: NodeId, message: Any) -> None:
        """Send ``message`` to a single node."""

    @abc.abstractmethod
    async def broadcast(self, message: Any, exclude: NodeId | None = None) -> None:
        """Send ``message`` to every connected node except ``exclude`` and self."""

    @abc.abstractmethod
    async def receive(self) -> tuple[NodeId, Any]:
        """Return the next ``(sender, message)`` pair."""

    @abc.abstractmethod
    async def get_connected_nodes(self) -> set[NodeId]:
        """Return the set of nodes this transport is connected to."""

    @abc.abstractmethod
    async def is_connected(self, node_id: NodeId) -> bool:
        """Return whether ``node_id`` is among the connected nodes."""

    @abc.abstractmethod
    async def disconnect(self) -> None:
        """Forget all connected nodes."""

    @abc.abstractmethod
    async def reconnect(self) -> None:
        """Reconnect to the network."""


class InMemoryNetwork(NetworkTransport):
    """Transport that posts outgoing messages to a shared bus.

    Incoming messages are pushed in with :meth:`deliver_message` and taken
    out by :meth:`receive`, which does not wait for new messages.
    """

    def __init__(self, node_id: NodeId) -> None:
        self.node_id = node_id
        self._queue: deque[tuple[NodeId, Any]] = deque()
        self._connected: set[NodeId] = set()
        self._bus: Bus | None = None
        self._online = True

    def __repr__(self) -> str:
        return f"{type(self).__name__}(node_id={self.node_id!r})"

    @property
    def online(self) -> bool:
        """False between :meth:`disconnect` and :meth:`reconnect`."""
        return self._online

    def connect_to_bus(self, bus: Bus) -> None:
        """Attach a bus callable taking ``(sender, target, message)``."""
        self._bus = bus

    def deliver_message(self, sender: NodeId, message: Any) -> None:
        """Queue a message for :meth:`receive`."""
        self._queue.append((sender, message))

    def set_connected_nodes(self, nodes: Iterable[NodeId]) -> None:
        self._connected = set(nodes)

    async def send_to(self, target: NodeId, message: Any) -> None:
        if self._bus is None:
            return
        try:
            self._bus(self.node_id, target, message)
        except NetworkError as exc:
            raise NetworkError("Failed to send message to bus") from exc

    async def broadcast(self, message: Any, exclude: NodeId | None = None) -> None:
        if self._bus is None:
            return
        for node_id in list(self._connected):
            if node_id == exclude or node_id == self.node_id:
                continue
            try:
                self._bus(self.node_id, node_id, message)
            except NetworkError as exc:
                raise NetworkError("Failed to broadcast message") from exc

    async def receive(self) -> tuple[NodeId, Any]:
        if self._queue:
            return self._queue.popleft()
        await asyncio.sleep(RECEIVE_IDLE_DELAY)
        raise NetworkError("No messages available")

    async def get_connected_nodes(self) -> set[NodeId]:
        return set(self._connected)

    async def is_connected(self, node_id: NodeId) -> bool:
        return node_id in self._connected

    async def disconnect(self) -> None:
        self._connected.clear()
        self._online = False

    async def reconnect(self) -> None:
        """Mark the transport as back on the network."""
        self._online = True


_CLOSED = object()


class InMemoryNetworkSimulator:
    """Routes messages posted on its bus to the registered nodes."""

    def __init__(self) -> None:
        self._nodes: dict[NodeId, Deliver] = {}
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nodes={len(self._nodes)}, closed={self._closed})"

    @property
    def bus(self) -> Bus:
        """Callable that posts ``(sender, target, message)`` on the bus."""
        return self._post

    def _post(self, sender: NodeId, target: NodeId, message: Any) -> None:
        if self._closed:
            raise NetworkError("Message bus is closed")
        self._queue.put_nowait((sender, target, message))

    def add_node(self, node_id: NodeId, sender: Deliver) -> None:
        """Register ``sender(from_node, message)`` as the inbox of ``node_id``."""
        self._nodes[node_id] = sender

    def close(self) -> None:
        """Stop accepting messages; :meth:`run` ends once the bus is drained."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def run(self) -> None:
        """Deliver bus messages until the bus is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            sender, target, message = item
            deliver = self._nodes.get(target)
            if deliver is None:
                continue
            try:
                deliver(sender, message)
            except Exception:  # a failing inbox must not stop routing
                continue