"""Simulated network with latency, packet loss and partitions."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from rabiasim.transport import NetworkError, NetworkTransport, NodeId

logger = logging.getLogger(__name__)

BASE_MESSAGE_SIZE = 64
DELIVERY_INTERVAL = 0.001
PARTITION_CLEANUP_INTERVAL = 1.0

SizeEstimator = Callable[[Any], int]


def default_size_estimator(message: Any) -> int:
    """Estimate a message's wire size: a fixed header plus any payload length."""
    if isinstance(message, (bytes, bytearray, memoryview, str)):
        return BASE_MESSAGE_SIZE + len(message)
    return BASE_MESSAGE_SIZE


@dataclass
class NetworkConditions:
    """Link behaviour applied to every message; durations are in seconds."""

    latency_min: float = 0.001
    latency_max: float = 0.010
    packet_loss_rate: float = 0.0
    partition_probability: float = 0.0
    bandwidth_limit: int | None = None  # bytes per second


@dataclass(frozen=True)
class NetworkPartition:
    """Nodes cut off from the rest of the network for a while."""

    partitioned_nodes: frozenset[NodeId]
    duration: float
    started_at: float = field(default_factory=time.monotonic)

    @property
    def expires_at(self) -> float:
        return self.started_at + self.duration

    def is_active(self, now: float) -> bool:
        return now < self.expires_at

    def separates(self, node1: NodeId, node2: NodeId) -> bool:
        """True when exactly one of the two nodes is inside the partition."""
        return (node1 in self.partitioned_nodes) != (node2 in self.partitioned_nodes)


@dataclass
class NetworkStats:
    """Counters collected by the simulator; latencies are in seconds."""

    messages_sent: int = 0
    messages_delivered: int = 0
    messages_dropped: int = 0
    total_latency: float = 0.0
    total_bytes: int = 0

    def average_latency(self) -> float:
        if self.messages_delivered > 0:
            return self.total_latency / self.messages_delivered
        return 0.0

    def throughput_mbps(self, duration: float) -> float:
        if duration > 0.0:
            return (self.total_bytes * 8.0) / (duration * 1_000_000.0)
        return 0.0


@dataclass
class _PendingMessage:
    sender: NodeId
    target: NodeId
    message: Any
    deliver_at: float
    size_bytes: int


_CHANNEL_CLOSED = object()


class NetworkSimulator:
    """Queues messages between nodes and delivers them after a simulated delay."""

    def __init__(self, size_estimator: SizeEstimator | None = None) -> None:
        self._size_estimator = size_estimator or default_size_estimator
        self._nodes: dict[NodeId, asyncio.Queue[Any]] = {}
        self._conditions = NetworkConditions()
        self._partitions: list[NetworkPartition] = []
        self._pending: deque[_PendingMessage] = deque()
        self._stats = NetworkStats()
        self._shutdown = False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(nodes={len(self._nodes)}, "
            f"pending={len(self._pending)}, partitions={len(self._partitions)})"
        )

    @property
    def conditions(self) -> NetworkConditions:
        return dataclasses.replace(self._conditions)

    def add_node(self, node_id: NodeId) -> asyncio.Queue[Any]:
        """Register a node and return the queue its messages arrive on."""
        inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._nodes[node_id] = inbox
        logger.info("Added node %s to network simulation", node_id)
        return inbox

    def has_node(self, node_id: NodeId) -> bool:
        """Return whether ``node_id`` is registered with the simulator."""
        return node_id in self._nodes

    def remove_node(self, node_id: NodeId) -> None:
        inbox = self._nodes.pop(node_id, None)
        if inbox is not None:
            inbox.put_nowait(_CHANNEL_CLOSED)
        logger.info("Removed node %s from network simulation", node_id)

    def update_conditions(self, conditions: NetworkConditions) -> None:
        logger.debug("Updated network conditions: %r", conditions)
        self._conditions = dataclasses.replace(conditions)

    def create_partition(self, nodes: Iterable[NodeId], duration: float) -> None:
        partition = NetworkPartition(frozenset(nodes), duration)
        self._partitions.append(partition)
        logger.warning(
            "Created network partition with nodes: %s for %ss",
            set(partition.partitioned_nodes),
            duration,
        )

    def heal_partitions(self) -> None:
        self._partitions.clear()
        logger.info("Healed all network partitions")

    def send_message(self, sender: NodeId, target: NodeId, message: Any) -> None:
        """Schedule ``message``, or drop it because of a partition or packet loss."""
        self._stats.messages_sent += 1

        if self._are_nodes_partitioned(sender, target):
            logger.debug("Message from %s to %s dropped due to partition", sender, target)
            self._stats.messages_dropped += 1
            return

        conditions = self._conditions
        if random.random() < conditions.packet_loss_rate:
            logger.debug("Message from %s to %s dropped due to packet loss", sender, target)
            self._stats.messages_dropped += 1
            return

        latency_ms = random.randint(
            int(conditions.latency_min * 1000), int(conditions.latency_max * 1000)
        )
        self._pending.append(
            _PendingMessage(
                sender=sender,
                target=target,
                message=message,
                deliver_at=time.monotonic() + latency_ms / 1000,
                size_bytes=self._size_estimator(message),
            )
        )

    def _are_nodes_partitioned(self, node1: NodeId, node2: NodeId) -> bool:
        now = time.monotonic()
        return any(
            partition.is_active(now) and partition.separates(node1, node2)
            for partition in self._partitions
        )

    async def run_simulation(self) -> None:
        """Deliver due messages and expire partitions until shut down."""
        logger.info("Starting network simulation")
        next_cleanup = time.monotonic()
        while not self._shutdown:
            self._deliver_pending_messages()
            if time.monotonic() >= next_cleanup:
                self._cleanup_expired_partitions()
                next_cleanup = time.monotonic() + PARTITION_CLEANUP_INTERVAL
            await asyncio.sleep(DELIVERY_INTERVAL)
        logger.info("Network simulation stopped")

    def _deliver_pending_messages(self) -> None:
        now = time.monotonic()
        while self._pending and self._pending[0].deliver_at <= now:
            pending = self._pending.popleft()
            inbox = self._nodes.get(pending.target)
            if inbox is None:
                logger.debug(
                    "Target node %s not found for message delivery", pending.target
                )
                continue
            inbox.put_nowait((pending.sender, pending.message))
            self._stats.messages_delivered += 1
            self._stats.total_latency += now - pending.deliver_at
            self._stats.total_bytes += pending.size_bytes
            logger.debug("Delivered message from %s to %s", pending.sender, pending.target)

    def _cleanup_expired_partitions(self) -> None:
        now = time.monotonic()
        active = []
        for partition in self._partitions:
            if partition.is_active(now):
                active.append(partition)
            else:
                logger.info(
                    "Partition expired for nodes: %s", set(partition.partitioned_nodes)
                )
        self._partitions = active

    def get_stats(self) -> NetworkStats:
        return dataclasses.replace(self._stats)

    def shutdown(self) -> None:
        self._shutdown = True
        logger.info("Network simulation shutdown requested")


class SimulatedNetwork(NetworkTransport):
    """Transport for one node that sends through a :class:`NetworkSimulator`."""

    def __init__(self, node_id: NodeId, simulator: NetworkSimulator) -> None:
        self.node_id = node_id
        self.simulator = simulator
        self._connected: set[NodeId] = set()
        self._inbox = simulator.add_node(node_id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(node_id={self.node_id!r})"

    def connect_to_nodes(self, nodes: Iterable[NodeId]) -> None:
        self._connected = set(nodes)

    async def send_to(self, target: NodeId, message: Any) -> None:
        self.simulator.send_message(self.node_id, target, message)

    async def broadcast(self, message: Any, exclude: NodeId | None = None) -> None:
        for node_id in list(self._connected):
            if node_id != exclude and node_id != self.node_id:
                self.simulator.send_message(self.node_id, node_id, message)

    async def receive(self) -> tuple[NodeId, Any]:
        item = await self._inbox.get()
        if item is _CHANNEL_CLOSED:
            self._inbox.put_nowait(_CHANNEL_CLOSED)
            raise NetworkError("Message channel closed")
        return item

    async def get_connected_nodes(self) -> set[NodeId]:
        return set(self._connected)

    async def is_connected(self, node_id: NodeId) -> bool:
        return node_id in self._connected

    async def disconnect(self) -> None:
        self._connected.clear()

    async def reconnect(self) -> None:
        """Re-register with the simulator if this node was removed from it."""
        if not self.simulator.has_node(self.node_id):
            self._inbox = self.simulator.add_node(self.node_id)