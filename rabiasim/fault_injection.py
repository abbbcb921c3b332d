"""Fault descriptions, expected outcomes and fault injection for test scenarios."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Union

from rabiasim.network_sim import NetworkConditions, NetworkSimulator, NetworkStats
from rabiasim.transport import NodeId

logger = logging.getLogger(__name__)

# Nodes whose committed phases differ by at most this many are considered consistent.
EVENTUAL_CONSISTENCY_LAG = 2


@dataclass(frozen=True)
class NodeCrash:
    """A node leaves the network for ``duration`` seconds."""

    node_id: NodeId
    duration: float


@dataclass(frozen=True)
class PartitionFault:
    """``nodes`` are cut off from the rest of the cluster for ``duration`` seconds."""

    nodes: frozenset[NodeId]
    duration: float


@dataclass(frozen=True)
class PacketLoss:
    """Messages are dropped with probability ``rate`` for ``duration`` seconds."""

    rate: float
    duration: float


@dataclass(frozen=True)
class HighLatency:
    """Latency is raised to the given range for ``duration`` seconds."""

    min_latency: float
    max_latency: float
    duration: float


@dataclass(frozen=True)
class SlowNode:
    """A node processes messages ``delay_factor`` times slower."""

    node_id: NodeId
    delay_factor: float
    duration: float


@dataclass(frozen=True)
class MessageReordering:
    """Messages are delayed by up to ``max_delay`` with ``probability``."""

    probability: float
    max_delay: float


Fault = Union[NodeCrash, PartitionFault, PacketLoss, HighLatency, SlowNode, MessageReordering]


@dataclass
class ActualOutcome:
    """Phase numbers reported by the nodes at the end of a scenario."""

    committed_phases: list[int] = field(default_factory=list)
    current_phases: list[int] = field(default_factory=list)
    nodes_with_progress: int = 0


@dataclass(frozen=True)
class AllCommitted:
    """Every node committed the same, non-zero number of phases."""

    def is_met(self, actual: ActualOutcome) -> bool:
        phases = actual.committed_phases
        if not phases:
            return False
        first = phases[0]
        return first > 0 and all(phase == first for phase in phases)


@dataclass(frozen=True)
class PartialCommitment:
    """At least one node committed ``min_committed`` phases or more."""

    min_committed: int

    def is_met(self, actual: ActualOutcome) -> bool:
        return any(phase >= self.min_committed for phase in actual.committed_phases)


@dataclass(frozen=True)
class NoProgress:
    """No node committed anything."""

    def is_met(self, actual: ActualOutcome) -> bool:
        return all(phase == 0 for phase in actual.committed_phases)


@dataclass(frozen=True)
class EventualConsistency:
    """Committed phases across nodes are within a small lag of each other."""

    def is_met(self, actual: ActualOutcome) -> bool:
        phases = actual.committed_phases
        highest = max(phases, default=0)
        lowest = min(phases, default=0)
        return highest - lowest <= EVENTUAL_CONSISTENCY_LAG


ExpectedOutcome = Union[AllCommitted, PartialCommitment, NoProgress, EventualConsistency]


@dataclass
class TestScenario:
    """A named run: commands to submit, faults to inject and what should happen.

    ``faults`` holds ``(delay, fault)`` pairs; all times are in seconds.
    """

    __test__ = False

    name: str
    description: str
    node_count: int
    initial_commands: list[str]
    faults: list[tuple[float, Fault]]
    expected_outcome: ExpectedOutcome
    timeout: float


@dataclass
class TestResult:
    """What a scenario run produced."""

    __test__ = False

    scenario: str
    success: bool
    duration: float
    network_stats: NetworkStats
    actual_outcome: ActualOutcome
    details: str


class FaultInjector:
    """Applies faults to a :class:`NetworkSimulator` and undoes them when they expire."""

    def __init__(self, simulator: NetworkSimulator) -> None:
        self.simulator = simulator
        self._tasks: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pending_restores={len(self._tasks)})"

    def _after(self, delay: float, action) -> None:
        async def runner() -> None:
            await asyncio.sleep(delay)
            action()

        task = asyncio.get_running_loop().create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def inject(self, fault: Fault) -> None:
        """Apply ``fault`` to the simulator."""
        sim = self.simulator
        if isinstance(fault, NodeCrash):
            logger.info(
                "Injecting node crash for %s (duration: %ss)", fault.node_id, fault.duration
            )
            sim.remove_node(fault.node_id)
            node_id = fault.node_id
            self._after(
                fault.duration,
                lambda: logger.info("Node %s would restart now", node_id),
            )
        elif isinstance(fault, PartitionFault):
            logger.info(
                "Injecting network partition for %s (duration: %ss)",
                set(fault.nodes),
                fault.duration,
            )
            sim.create_partition(fault.nodes, fault.duration)
        elif isinstance(fault, PacketLoss):
            logger.info(
                "Injecting packet loss rate %s (duration: %ss)", fault.rate, fault.duration
            )
            sim.update_conditions(NetworkConditions(packet_loss_rate=fault.rate))
            self._after(
                fault.duration,
                lambda: sim.update_conditions(NetworkConditions(packet_loss_rate=0.0)),
            )
        elif isinstance(fault, HighLatency):
            logger.info(
                "Injecting high latency %s-%ss (duration: %ss)",
                fault.min_latency,
                fault.max_latency,
                fault.duration,
            )
            sim.update_conditions(
                NetworkConditions(
                    latency_min=fault.min_latency, latency_max=fault.max_latency
                )
            )
            self._after(fault.duration, lambda: sim.update_conditions(NetworkConditions()))
        elif isinstance(fault, SlowNode):
            logger.info(
                "Injecting slow node for %s (duration: %ss)", fault.node_id, fault.duration
            )
        elif isinstance(fault, MessageReordering):
            logger.info("Injecting message reordering")
        else:
            raise TypeError(f"Unknown fault: {fault!r}")


def create_test_scenarios() -> list[TestScenario]:
    """Return the standard set of fault scenarios."""
    return [
        TestScenario(
            name="Basic Consensus",
            description="Normal operation with no faults",
            node_count=3,
            initial_commands=["SET key1 value1", "SET key2 value2", "GET key1"],
            faults=[],
            expected_outcome=AllCommitted(),
            timeout=5.0,
        ),
        TestScenario(
            name="Single Node Failure",
            description="One node crashes and recovers",
            node_count=3,
            initial_commands=["SET key1 value1", "SET key2 value2"],
            faults=[(0.5, NodeCrash(node_id=uuid.uuid4(), duration=2.0))],
            expected_outcome=EventualConsistency(),
            timeout=10.0,
        ),
        TestScenario(
            name="Network Partition",
            description="Network splits into two partitions",
            node_count=5,
            initial_commands=["SET key1 value1", "SET key2 value2", "SET key3 value3"],
            faults=[(1.0, PartitionFault(nodes=frozenset(), duration=3.0))],
            expected_outcome=PartialCommitment(min_committed=1),
            timeout=15.0,
        ),
        TestScenario(
            name="High Packet Loss",
            description="Network with high packet loss rate",
            node_count=3,
            initial_commands=["SET key1 value1", "SET key2 value2"],
            faults=[(0.2, PacketLoss(rate=0.3, duration=5.0))],
            expected_outcome=EventualConsistency(),
            timeout=12.0,
        ),
        TestScenario(
            name="High Network Latency",
            description="Network with high latency",
            node_count=3,
            initial_commands=["SET key1 value1", "SET key2 value2"],
            faults=[(0.1, HighLatency(min_latency=0.1, max_latency=0.5, duration=4.0))],
            expected_outcome=AllCommitted(),
            timeout=10.0,
        ),
        TestScenario(
            name="Cascading Failures",
            description="Multiple nodes fail in sequence",
            node_count=5,
            initial_commands=["SET key1 value1", "SET key2 value2", "SET key3 value3"],
            faults=[
                (0.5, NodeCrash(node_id=uuid.uuid4(), duration=3.0)),
                (1.5, NodeCrash(node_id=uuid.uuid4(), duration=2.0)),
            ],
            expected_outcome=PartialCommitment(min_committed=1),
            timeout=15.0,
        ),
    ]