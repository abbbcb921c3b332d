# rabiasim

Building blocks for testing consensus clusters under controlled conditions,
built on `asyncio` and the standard library alone.

- `rabiasim.persistence`: `InMemoryPersistence` and `FileSystemPersistence`,
  both implementing `PersistenceLayer`. Each keeps exactly one state value.
- `rabiasim.transport`: the `NetworkTransport` interface, plus `InMemoryNetwork`
  and `InMemoryNetworkSimulator`, which together form a simple message bus.
- `rabiasim.network_sim`: `NetworkSimulator` and `SimulatedNetwork`. They
  model latency, packet loss and timed partitions, and count traffic in
  `NetworkStats`.
- `rabiasim.fault_injection`: fault descriptions, expected outcomes,
  `TestScenario`, `TestResult`, and a `FaultInjector` that applies faults to a
  `NetworkSimulator`.
- `rabiasim.scenarios`: `PerformanceTest` and `PerformanceResult`, latency
  statistics, and a printable summary table.

All durations are given in seconds, as floats.

## Installation

```
pip install rabiasim
```

To run the test suite, install the `test` extra and run `pytest`:

```
pip install "rabiasim[test]"
pytest
```

## Persistence

```python
import asyncio
from rabiasim.persistence import FileSystemPersistence, InMemoryPersistence

async def demo():
    memory = InMemoryPersistence()
    assert await memory.load_state() is None
    await memory.save_state(b"hello world")
    assert await memory.load_state() == b"hello world"

    disk = FileSystemPersistence("/tmp/rabiasim-demo")
    await disk.save_state(b"persistent state")
    assert await disk.load_state() == b"persistent state"

asyncio.run(demo())
```

`load_state()` returns `None` until something has been saved.

`FileSystemPersistence` does the following:

- It creates its data directory if that directory is missing.
- It stores the state in `state.dat` inside that directory.
- It writes to `state.tmp` first and then moves that file over `state.dat`.

Failures to create the directory, or to write or read the file, raise
`PersistenceError`.

## In-memory bus

`InMemoryNetworkSimulator.bus` is a callable that takes
`(sender, target, message)`. Use `InMemoryNetwork.connect_to_bus()` to attach a
network to the bus. Use `add_node(node_id, deliver)` to register an inbox
callable, often a network's `deliver_message`. `run()` routes posted messages
to the registered inboxes, and it stops once `close()` has been called and the
bus has been drained.

`InMemoryNetwork.receive()` does not wait for messages. When its queue is
empty, it pauses briefly and raises `NetworkError`. When no bus is attached,
`send_to()` and `broadcast()` do nothing.

```python
import asyncio
from rabiasim.transport import InMemoryNetwork, InMemoryNetworkSimulator

async def demo():
    sim = InMemoryNetworkSimulator()
    a, b = InMemoryNetwork("a"), InMemoryNetwork("b")
    for net in (a, b):
        net.connect_to_bus(sim.bus)
        net.set_connected_nodes({"a", "b"})
        sim.add_node(net.node_id, net.deliver_message)

    await a.broadcast("hello")
    sim.close()
    await sim.run()
    assert await b.receive() == ("a", "hello")

asyncio.run(demo())
```

## Simulated network

```python
import asyncio
from rabiasim.network_sim import NetworkConditions, NetworkSimulator, SimulatedNetwork

async def demo():
    sim = NetworkSimulator()
    a = SimulatedNetwork("a", sim)
    b = SimulatedNetwork("b", sim)
    a.connect_to_nodes({"a", "b"})
    b.connect_to_nodes({"a", "b"})

    runner = asyncio.create_task(sim.run_simulation())
    await a.send_to("b", "ping")
    sender, message = await asyncio.wait_for(b.receive(), 1.0)
    print(sender, message, sim.get_stats())

    sim.update_conditions(NetworkConditions(packet_loss_rate=0.5))
    sim.create_partition({"a"}, 0.5)  # a is cut off from b for half a second

    sim.shutdown()
    await runner

asyncio.run(demo())
```

The simulator drops a message in two cases: when exactly one of its two
endpoints lies inside an active partition, and with probability
`packet_loss_rate`. Any other message is delivered after a random delay
between `latency_min` and `latency_max`, in whole milliseconds.

`NetworkStats` counts messages sent, delivered and dropped, along with total
latency and bytes. It also offers `average_latency()` and
`throughput_mbps(duration)`. Message sizes come from an optional
`size_estimator` passed to `NetworkSimulator`. By default the size is 64 bytes
plus the length of a `bytes` or `str` payload.

After `remove_node()`, that node's `SimulatedNetwork.receive()` raises
`NetworkError`. `reconnect()` registers the node again.

## Faults and expected outcomes

```python
from rabiasim.fault_injection import (
    ActualOutcome, AllCommitted, EventualConsistency, FaultInjector, PacketLoss,
)

outcome = ActualOutcome(committed_phases=[3, 4, 5])
EventualConsistency().is_met(outcome)   # True: phases differ by at most 2
AllCommitted().is_met(outcome)          # False: phases are not all equal

# inside a running event loop:
# await FaultInjector(simulator).inject(PacketLoss(rate=0.3, duration=2.0))
```

`FaultInjector.inject()` handles each fault as follows:

- `PartitionFault` creates a partition.
- `PacketLoss` and `HighLatency` replace the simulator's conditions, then
  restore the defaults once `duration` has passed.
- `NodeCrash` removes the node from the simulator and does not bring it back.
- `SlowNode` and `MessageReordering` are only logged.

`create_test_scenarios()` returns the standard `TestScenario` list:

- basic consensus
- single node failure
- network partition
- high packet loss
- high latency
- cascading failures

## Performance reports

- `create_performance_tests()` returns the standard `PerformanceTest` suite.
- `generate_command(n)` produces a mixed `SET`/`GET` workload.
- `summarize_latencies(latencies)` returns a `LatencySummary` with the average,
  p95 and p99 latency.
- `estimate_memory_usage(node_count)` gives a rough figure in megabytes.
- `format_performance_summary(results)` returns the summary table as text, and
  `print_performance_summary(results)` prints it.

```python
from rabiasim.scenarios import PerformanceResult, print_performance_summary, summarize_latencies

lat = summarize_latencies([0.010, 0.020, 0.030])
result = PerformanceResult(
    test_name="demo", total_operations=10, successful_operations=9,
    failed_operations=1, test_duration=2.0, throughput_ops_per_sec=4.5,
    average_latency=lat.average, p95_latency=lat.p95, p99_latency=lat.p99,
)
print_performance_summary([result])
```

## What this package does not do

The package contains no consensus engine, state machine or cluster harness.

- `TestScenario` and `PerformanceTest` only describe runs. Nothing in the
  package starts nodes, submits commands, runs a scenario or a performance
  test, or fills in a `TestResult` or `PerformanceResult`. The caller drives
  its own cluster through these transports and records the results.
- There is no command-line program.