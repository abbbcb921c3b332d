import asyncio

import pytest

from rabiasim.transport import (
    InMemoryNetwork,
    InMemoryNetworkSimulator,
    NetworkError,
)


async def _run_until_closed(simulator):
    task = asyncio.create_task(simulator.run())
    await asyncio.sleep(0)
    simulator.close()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_inmemory_network_basic():
    network1 = InMemoryNetwork("node1")
    InMemoryNetwork("node2")

    assert await network1.get_connected_nodes() == set()
    assert await network1.is_connected("node2") is False


@pytest.mark.asyncio
async def test_network_disconnect_reconnect():
    network = InMemoryNetwork("node")
    network.set_connected_nodes({"a", "b"})
    await network.disconnect()
    assert await network.get_connected_nodes() == set()
    await network.reconnect()
    assert await network.is_connected("a") is False


@pytest.mark.asyncio
async def test_simple_network():
    network = InMemoryNetwork("node")
    assert await network.get_connected_nodes() == set()
    assert await network.is_connected("node") is False


@pytest.mark.asyncio
async def test_set_connected_nodes():
    network = InMemoryNetwork("n1")
    network.set_connected_nodes(["n1", "n2", "n3"])
    assert await network.get_connected_nodes() == {"n1", "n2", "n3"}
    assert await network.is_connected("n2") is True


@pytest.mark.asyncio
async def test_connected_nodes_returns_copy():
    network = InMemoryNetwork("n1")
    network.set_connected_nodes({"n2"})
    nodes = await network.get_connected_nodes()
    nodes.add("n9")
    assert await network.is_connected("n9") is False


@pytest.mark.asyncio
async def test_receive_empty_raises():
    network = InMemoryNetwork("n1")
    with pytest.raises(NetworkError):
        await network.receive()


@pytest.mark.asyncio
async def test_deliver_then_receive_in_order():
    network = InMemoryNetwork("n1")
    network.deliver_message("n2", "first")
    network.deliver_message("n3", "second")
    assert await network.receive() == ("n2", "first")
    assert await network.receive() == ("n3", "second")


@pytest.mark.asyncio
async def test_send_without_bus_is_noop():
    network = InMemoryNetwork("n1")
    network.set_connected_nodes({"n2"})
    await network.send_to("n2", "hello")
    await network.broadcast("hello")
    with pytest.raises(NetworkError):
        await network.receive()


@pytest.mark.asyncio
async def test_send_through_simulator():
    simulator = InMemoryNetworkSimulator()
    network1 = InMemoryNetwork("n1")
    network2 = InMemoryNetwork("n2")
    for net in (network1, network2):
        net.connect_to_bus(simulator.bus)
        simulator.add_node(net.node_id, net.deliver_message)

    await network1.send_to("n2", "heartbeat")
    await _run_until_closed(simulator)

    assert await network2.receive() == ("n1", "heartbeat")


@pytest.mark.asyncio
async def test_broadcast_skips_self_and_excluded():
    simulator = InMemoryNetworkSimulator()
    networks = {name: InMemoryNetwork(name) for name in ("n1", "n2", "n3")}
    for net in networks.values():
        net.connect_to_bus(simulator.bus)
        net.set_connected_nodes(networks)
        simulator.add_node(net.node_id, net.deliver_message)

    await networks["n1"].broadcast("msg", exclude="n3")
    await _run_until_closed(simulator)

    assert await networks["n2"].receive() == ("n1", "msg")
    with pytest.raises(NetworkError):
        await networks["n3"].receive()
    with pytest.raises(NetworkError):
        await networks["n1"].receive()


@pytest.mark.asyncio
async def test_broadcast_reaches_all_others():
    simulator = InMemoryNetworkSimulator()
    networks = {name: InMemoryNetwork(name) for name in ("n1", "n2", "n3")}
    for net in networks.values():
        net.connect_to_bus(simulator.bus)
        net.set_connected_nodes(networks)
        simulator.add_node(net.node_id, net.deliver_message)

    await networks["n1"].broadcast("hello")
    await _run_until_closed(simulator)

    assert await networks["n2"].receive() == ("n1", "hello")
    assert await networks["n3"].receive() == ("n1", "hello")


@pytest.mark.asyncio
async def test_unknown_target_is_dropped():
    simulator = InMemoryNetworkSimulator()
    network1 = InMemoryNetwork("n1")
    network2 = InMemoryNetwork("n2")
    network1.connect_to_bus(simulator.bus)
    simulator.add_node("n2", network2.deliver_message)

    await network1.send_to("ghost", "lost")
    await network1.send_to("n2", "kept")
    await _run_until_closed(simulator)

    assert await network2.receive() == ("n1", "kept")
    with pytest.raises(NetworkError):
        await network2.receive()


@pytest.mark.asyncio
async def test_send_after_close_raises():
    simulator = InMemoryNetworkSimulator()
    network = InMemoryNetwork("n1")
    network.connect_to_bus(simulator.bus)
    simulator.close()
    with pytest.raises(NetworkError, match="Failed to send message to bus"):
        await network.send_to("n2", "late")


@pytest.mark.asyncio
async def test_broadcast_after_close_raises():
    simulator = InMemoryNetworkSimulator()
    network = InMemoryNetwork("n1")
    network.connect_to_bus(simulator.bus)
    network.set_connected_nodes({"n1", "n2"})
    simulator.close()
    with pytest.raises(NetworkError, match="Failed to broadcast message"):
        await network.broadcast("late")


@pytest.mark.asyncio
async def test_failing_inbox_does_not_stop_routing():
    simulator = InMemoryNetworkSimulator()
    received = []

    def broken(sender, message):
        raise RuntimeError("inbox gone")

    simulator.add_node("bad", broken)
    simulator.add_node("good", lambda sender, message: received.append((sender, message)))
    simulator.bus("n1", "bad", "x")
    simulator.bus("n1", "good", "y")
    await _run_until_closed(simulator)

    assert received == [("n1", "y")]