"""Performance test definitions, latency statistics and result reporting."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from rabiasim.network_sim import NetworkConditions, NetworkStats

BASE_MEMORY_PER_NODE_MB = 10.0
NETWORK_SIMULATION_MEMORY_MB = 5.0
OPERATION_TIMEOUT = 5.0

SUMMARY_SEPARATOR_WIDTH = 100


@dataclass
class PerformanceTest:
    """Load to drive through a cluster; durations are in seconds."""

    name: str
    description: str
    node_count: int
    total_operations: int
    operations_per_second: int
    batch_size: int
    test_duration: float
    network_conditions: NetworkConditions = field(default_factory=NetworkConditions)

    @property
    def operations_interval(self) -> float:
        """Pause between batches that keeps to the requested rate (at least 1 ns)."""
        nanos = max(1_000_000_000 // self.operations_per_second, 1)
        return nanos / 1_000_000_000


@dataclass
class PerformanceResult:
    """Measurements from one performance test; durations are in seconds."""

    test_name: str
    total_operations: int
    successful_operations: int
    failed_operations: int
    test_duration: float
    throughput_ops_per_sec: float
    average_latency: float
    p95_latency: float
    p99_latency: float
    network_stats: NetworkStats = field(default_factory=NetworkStats)
    memory_usage_mb: float = 0.0

    def success_rate(self) -> float:
        """Percentage of operations that succeeded, or 0.0 if none were run."""
        if self.total_operations > 0:
            return self.successful_operations / self.total_operations * 100.0
        return 0.0


@dataclass(frozen=True)
class LatencySummary:
    """Average and tail latencies in seconds."""

    average: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


def _percentile(sorted_values: Sequence[float], fraction: float) -> float:
    index = int(len(sorted_values) * fraction)
    return sorted_values[min(index, len(sorted_values) - 1)]


def summarize_latencies(latencies: Iterable[float]) -> LatencySummary:
    """Return the average, 95th and 99th percentile of ``latencies``."""
    ordered = sorted(latencies)
    if not ordered:
        return LatencySummary()
    return LatencySummary(
        average=sum(ordered) / len(ordered),
        p95=_percentile(ordered, 0.95),
        p99=_percentile(ordered, 0.99),
    )


def generate_command(operation_id: int) -> str:
    """Return a key-value command for a mixed read/write workload."""
    kind = operation_id % 4
    if kind == 0:
        return f"SET key{operation_id} value{operation_id}"
    if kind == 1:
        return f"GET key{operation_id // 4}"
    if kind == 2:
        return f"SET shared_key value{operation_id}"
    return "GET shared_key"


def estimate_memory_usage(node_count: int) -> float:
    """Rough memory estimate in megabytes for a simulated cluster."""
    return node_count * BASE_MEMORY_PER_NODE_MB + NETWORK_SIMULATION_MEMORY_MB


def create_performance_tests() -> list[PerformanceTest]:
    """Return the standard set of performance tests."""
    return [
        PerformanceTest(
            name="Baseline Throughput",
            description="Maximum throughput with ideal network conditions",
            node_count=3,
            total_operations=1000,
            operations_per_second=100,
            batch_size=10,
            test_duration=30.0,
            network_conditions=NetworkConditions(),
        ),
        PerformanceTest(
            name="High Load",
            description="High throughput test with larger batches",
            node_count=5,
            total_operations=5000,
            operations_per_second=500,
            batch_size=50,
            test_duration=60.0,
            network_conditions=NetworkConditions(),
        ),
        PerformanceTest(
            name="Network Latency Impact",
            description="Performance with realistic network latency",
            node_count=3,
            total_operations=1000,
            operations_per_second=50,
            batch_size=10,
            test_duration=45.0,
            network_conditions=NetworkConditions(
                latency_min=0.010,
                latency_max=0.050,
                packet_loss_rate=0.0,
                partition_probability=0.0,
                bandwidth_limit=None,
            ),
        ),
        PerformanceTest(
            name="Packet Loss Resilience",
            description="Performance under moderate packet loss",
            node_count=3,
            total_operations=500,
            operations_per_second=25,
            batch_size=5,
            test_duration=60.0,
            network_conditions=NetworkConditions(
                latency_min=0.005,
                latency_max=0.020,
                packet_loss_rate=0.05,
                partition_probability=0.0,
                bandwidth_limit=None,
            ),
        ),
        PerformanceTest(
            name="Large Cluster",
            description="Scalability test with larger cluster",
            node_count=7,
            total_operations=2000,
            operations_per_second=100,
            batch_size=20,
            test_duration=45.0,
            network_conditions=NetworkConditions(
                latency_min=0.005,
                latency_max=0.025,
                packet_loss_rate=0.01,
                partition_probability=0.0,
                bandwidth_limit=None,
            ),
        ),
        PerformanceTest(
            name="Small Batches",
            description="Performance with small batch sizes",
            node_count=3,
            total_operations=1000,
            operations_per_second=200,
            batch_size=1,
            test_duration=30.0,
            network_conditions=NetworkConditions(),
        ),
    ]


def _millis(seconds: float) -> int:
    """Whole milliseconds in ``seconds``, truncated."""
    return int(round(seconds * 1_000_000)) // 1000


def format_performance_summary(results: Sequence[PerformanceResult]) -> str:
    """Render a table of results followed by the first result's network statistics."""
    lines = [
        "",
        "=== PERFORMANCE TEST SUMMARY ===",
        f"{'Test Name':<25} {'Ops/Sec':<12} {'Avg Latency':<15} "
        f"{'P95 Latency':<15} {'P99 Latency':<15} {'Success Rate':<15}",
        "-" * SUMMARY_SEPARATOR_WIDTH,
    ]
    for result in results:
        lines.append(
            f"{result.test_name:<25} {result.throughput_ops_per_sec:<12.1f} "
            f"{_millis(result.average_latency):<15} "
            f"{_millis(result.p95_latency):<15} "
            f"{_millis(result.p99_latency):<15} "
            f"{result.success_rate():<15.1f}%"
        )

    lines.append("")
    lines.append("=== NETWORK STATISTICS ===")
    if results:
        first = results[0]
        stats = first.network_stats
        lines.extend(
            [
                f"Total Messages Sent: {stats.messages_sent}",
                f"Total Messages Delivered: {stats.messages_delivered}",
                f"Total Messages Dropped: {stats.messages_dropped}",
                f"Average Network Latency: {_millis(stats.average_latency())}ms",
                f"Network Throughput: {stats.throughput_mbps(first.test_duration):.2f} Mbps",
            ]
        )
    return "\n".join(lines)


def print_performance_summary(results: Sequence[PerformanceResult]) -> None:
    """Print :func:`format_performance_summary` to standard output."""
    print(format_performance_summary(results))