"""Unit tests for node metrics reconciliation."""

import json
import threading
import time

import pytest

from kubechat.fetchers.base import (
    DataFormatError,
    NodeNotFoundError,
    QuantityError,
    TransportError,
)
from kubechat.fetchers.metrics import (
    NODE_METRICS_ENDPOINT,
    NODES_ENDPOINT,
    MetricsReconciler,
    NodeCapacity,
    NodeUsage,
    compute_utilization,
    parse_node_list,
    parse_node_metrics,
    reconcile,
    utilization_report,
)


def node_list(*nodes):
    return json.dumps({
        "kind": "NodeList",
        "items": [
            {
                "metadata": {"name": name, "uid": f"uid-{name}"},
                "status": {"capacity": {"cpu": cpu, "memory": memory, "pods": "110"}},
            }
            for name, cpu, memory in nodes
        ],
    })


def metrics_list(*usages):
    return json.dumps({
        "kind": "NodeMetricsList",
        "items": [
            {
                "metadata": {"name": name},
                "timestamp": "2025-01-01T00:00:00Z",
                "window": "20s",
                "usage": {"cpu": cpu, "memory": memory},
            }
            for name, cpu, memory in usages
        ],
    })


class FakeClient:
    """Serves canned bodies per endpoint, or raises a configured error."""

    def __init__(self, bodies=None, errors=None):
        self.bodies = bodies or {}
        self.errors = errors or {}
        self.calls = []

    def fetch(self, endpoint):
        self.calls.append(endpoint)
        if endpoint in self.errors:
            raise self.errors[endpoint]
        return self.bodies[endpoint]


class TestParsing:
    """Tests for response body parsing."""

    def test_parse_node_list(self):
        capacities = parse_node_list(node_list(("node-a", "2", "6026268Ki")))
        assert capacities == [NodeCapacity(name="node-a", cpu="2", memory="6026268Ki")]

    def test_parse_node_metrics(self):
        usages = parse_node_metrics(metrics_list(("node-a", "160635734n", "1879200Ki")))
        assert usages == [NodeUsage(name="node-a", cpu="160635734n", memory="1879200Ki")]

    def test_parse_invalid_json(self):
        with pytest.raises(DataFormatError):
            parse_node_list("not json")

    def test_parse_missing_fields(self):
        with pytest.raises(DataFormatError):
            parse_node_metrics(json.dumps({"items": [{"metadata": {"name": "node-a"}}]}))


class TestComputeUtilization:
    """Tests for per-node utilization math."""

    def test_compute(self):
        item = compute_utilization(
            NodeCapacity("node-a", "2", "6026268Ki"),
            NodeUsage("node-a", "160635734n", "1879200Ki"),
        )
        assert item.name == "node-a"
        assert item.cpu_cores_used == pytest.approx(0.160635734)
        assert item.cpu_percent == pytest.approx(8.0317867)
        assert item.memory_bytes_used == 1923276800
        assert item.memory_percent == pytest.approx(1879200 / 6026268 * 100)

    def test_not_clamped(self):
        item = compute_utilization(
            NodeCapacity("node-a", "1", "100Ki"),
            NodeUsage("node-a", "2000000000n", "200Ki"),
        )
        assert item.cpu_percent == pytest.approx(200.0)
        assert item.memory_percent == pytest.approx(200.0)

    def test_zero_capacity(self):
        with pytest.raises(QuantityError, match="zero capacity"):
            compute_utilization(NodeCapacity("node-a", "0", "100Ki"), NodeUsage("node-a", "1n", "1Ki"))

    def test_unsupported_unit(self):
        with pytest.raises(QuantityError):
            compute_utilization(NodeCapacity("node-a", "2", "4Gi"), NodeUsage("node-a", "1n", "1Ki"))


class TestReconcile:
    """Tests for joining capacity and usage records."""

    def test_order_follows_metrics(self):
        capacities = [NodeCapacity("a", "1", "100Ki"), NodeCapacity("b", "1", "100Ki")]
        usages = [NodeUsage("b", "1n", "1Ki"), NodeUsage("a", "1n", "1Ki")]

        items = reconcile(capacities, usages)

        assert [item.name for item in items] == ["b", "a"]

    def test_inventory_only_nodes_are_skipped(self):
        capacities = [NodeCapacity("a", "1", "100Ki"), NodeCapacity("b", "1", "100Ki")]
        items = reconcile(capacities, [NodeUsage("a", "1n", "1Ki")])
        assert [item.name for item in items] == ["a"]

    def test_missing_node_aborts(self):
        capacities = [NodeCapacity("a", "1", "100Ki")]
        usages = [NodeUsage("a", "1n", "1Ki"), NodeUsage("ghost", "1n", "1Ki")]

        with pytest.raises(NodeNotFoundError) as exc_info:
            reconcile(capacities, usages)

        assert exc_info.value.node_name == "ghost"
        assert "No matching node found for metrics: ghost" in str(exc_info.value)

    def test_first_duplicate_wins(self):
        capacities = [NodeCapacity("a", "1", "100Ki"), NodeCapacity("a", "4", "100Ki")]
        items = reconcile(capacities, [NodeUsage("a", "1000000000n", "1Ki")])
        assert items[0].cpu_percent == pytest.approx(100.0)

    def test_empty(self):
        assert reconcile([], []) == []

    def test_report_shape(self):
        items = reconcile([NodeCapacity("a", "1", "100Ki")], [NodeUsage("a", "1n", "1Ki")])
        report = utilization_report(items)
        assert list(report) == ["items"]
        assert set(report["items"][0]) == {
            "name", "cpu_cores_used", "cpu_percent", "memory_bytes_used", "memory_percent",
        }


class TestMetricsReconciler:
    """Tests for the async fetch-parse-join pipeline."""

    @pytest.mark.asyncio
    async def test_get_utilization(self):
        client = FakeClient(bodies={
            NODES_ENDPOINT: node_list(("node-a", "2", "6026268Ki"), ("node-b", "4", "8000000Ki")),
            NODE_METRICS_ENDPOINT: metrics_list(("node-b", "1000000000n", "4000000Ki")),
        })

        items = await MetricsReconciler(client).get_utilization()

        assert len(items) == 1
        assert items[0].name == "node-b"
        assert items[0].cpu_percent == pytest.approx(25.0)
        assert items[0].memory_percent == pytest.approx(50.0)
        assert sorted(client.calls) == sorted([NODES_ENDPOINT, NODE_METRICS_ENDPOINT])

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self):
        client = FakeClient(
            bodies={NODES_ENDPOINT: node_list(("node-a", "2", "6026268Ki"))},
            errors={NODE_METRICS_ENDPOINT: TransportError("metrics unavailable")},
        )

        with pytest.raises(TransportError, match="metrics unavailable"):
            await MetricsReconciler(client).get_utilization()

    @pytest.mark.asyncio
    async def test_unmatched_node_fails_whole_call(self):
        client = FakeClient(bodies={
            NODES_ENDPOINT: node_list(("node-a", "2", "6026268Ki")),
            NODE_METRICS_ENDPOINT: metrics_list(
                ("node-a", "1n", "1Ki"),
                ("node-z", "1n", "1Ki"),
            ),
        })

        with pytest.raises(NodeNotFoundError):
            await MetricsReconciler(client).get_utilization()

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        client = FakeClient(bodies={
            NODES_ENDPOINT: "<html>gateway error</html>",
            NODE_METRICS_ENDPOINT: metrics_list(),
        })

        with pytest.raises(DataFormatError):
            await MetricsReconciler(client).get_utilization()


class OverlapClient:
    """Each fetch waits until the other one is in flight."""

    def __init__(self, bodies):
        self.bodies = bodies
        self.barrier = threading.Barrier(2, timeout=5)
        self.lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def fetch(self, endpoint):
        with self.lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            self.barrier.wait()
            return self.bodies[endpoint]
        finally:
            with self.lock:
                self.in_flight -= 1


class TestConcurrentFetch:
    """The inventory and metrics requests are issued together."""

    @pytest.mark.asyncio
    async def test_fetches_overlap(self):
        client = OverlapClient({
            NODES_ENDPOINT: node_list(("node-a", "2", "6026268Ki")),
            NODE_METRICS_ENDPOINT: metrics_list(("node-a", "160635734n", "1879200Ki")),
        })

        items = await MetricsReconciler(client).get_utilization()

        assert client.peak == 2
        assert [item.name for item in items] == ["node-a"]

    @pytest.mark.asyncio
    async def test_fetch_both_returns_bodies_in_order(self):
        client = OverlapClient({NODES_ENDPOINT: "nodes-body", NODE_METRICS_ENDPOINT: "metrics-body"})

        assert await MetricsReconciler(client).fetch_both() == ("nodes-body", "metrics-body")

    @pytest.mark.asyncio
    async def test_completed_fetch_is_discarded_when_other_fails(self):
        class SlowFailureClient:
            def fetch(self, endpoint):
                if endpoint == NODE_METRICS_ENDPOINT:
                    time.sleep(0.05)
                    raise TransportError("metrics-server unavailable")
                # Would fail parsing if it were ever consumed
                return "not a node list"

        with pytest.raises(TransportError, match="metrics-server unavailable"):
            await MetricsReconciler(SlowFailureClient()).get_utilization()
