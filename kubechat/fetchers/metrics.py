"""Node utilization from the Kubernetes inventory and metrics-server APIs.

The node inventory (``/api/v1/nodes``) reports capacity and the metrics API
(``/apis/metrics.k8s.io/v1beta1/nodes``) reports current usage, each with
its own unit encoding. This module fetches both, joins them by node name and
derives utilization percentages. Any failure along the way aborts the whole
operation; callers never see a partial list.

This requires the cluster to run the metrics-server addon.
"""

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Sequence

import structlog
from pydantic import BaseModel, ValidationError

from kubechat.fetchers.base import DataFormatError, NodeNotFoundError, QuantityError
from kubechat.fetchers.kubernetes import KubernetesClient
from kubechat.fetchers.quantities import (
    ki_to_bytes,
    parse_cpu_capacity,
    parse_cpu_usage,
    parse_memory_ki,
)

NODES_ENDPOINT = "/api/v1/nodes"
NODE_METRICS_ENDPOINT = "/apis/metrics.k8s.io/v1beta1/nodes"

logger = structlog.get_logger("kubechat.fetchers.metrics")


# Wire models, only the fields we read are declared


class _Metadata(BaseModel):
    name: str


class _Resources(BaseModel):
    cpu: str
    memory: str


class _NodeStatus(BaseModel):
    capacity: _Resources


class _Node(BaseModel):
    metadata: _Metadata
    status: _NodeStatus


class _NodeList(BaseModel):
    items: List[_Node]


class _NodeMetrics(BaseModel):
    metadata: _Metadata
    usage: _Resources


class _NodeMetricsList(BaseModel):
    items: List[_NodeMetrics]


@dataclass
class NodeCapacity:
    """Capacity of a node as reported by the inventory API."""

    name: str
    cpu: str  # plain core count, e.g. "2"
    memory: str  # e.g. "6026268Ki"


@dataclass
class NodeUsage:
    """Current usage of a node as reported by the metrics API."""

    name: str
    cpu: str  # nanocores, e.g. "160635734n"
    memory: str  # e.g. "1879200Ki"


@dataclass
class NodeUtilization:
    """Usage of a node relative to its capacity.

    Percentages are not clamped; inconsistent source data may yield
    values above 100.
    """

    name: str
    cpu_cores_used: float
    cpu_percent: float
    memory_bytes_used: int
    memory_percent: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def parse_node_list(body: str) -> List[NodeCapacity]:
    """Parse a ``/api/v1/nodes`` response body.

    Raises:
        DataFormatError: If the body is not a node list
    """
    try:
        nodes = _NodeList.model_validate_json(body)
    except ValidationError as e:
        raise DataFormatError(f"Failed to parse node list: {e}") from e

    return [
        NodeCapacity(
            name=node.metadata.name,
            cpu=node.status.capacity.cpu,
            memory=node.status.capacity.memory,
        )
        for node in nodes.items
    ]


def parse_node_metrics(body: str) -> List[NodeUsage]:
    """Parse a ``/apis/metrics.k8s.io/v1beta1/nodes`` response body.

    Raises:
        DataFormatError: If the body is not a node metrics list
    """
    try:
        metrics = _NodeMetricsList.model_validate_json(body)
    except ValidationError as e:
        raise DataFormatError(f"Failed to parse node metrics: {e}") from e

    return [
        NodeUsage(
            name=item.metadata.name,
            cpu=item.usage.cpu,
            memory=item.usage.memory,
        )
        for item in metrics.items
    ]


def compute_utilization(capacity: NodeCapacity, usage: NodeUsage) -> NodeUtilization:
    """Derive utilization for a single node.

    Raises:
        QuantityError: If any quantity string is malformed or the capacity is zero
    """
    cpu_capacity = parse_cpu_capacity(capacity.cpu)
    memory_capacity_ki = parse_memory_ki(capacity.memory)
    cpu_used = parse_cpu_usage(usage.cpu)
    memory_used_ki = parse_memory_ki(usage.memory)

    if cpu_capacity == 0 or memory_capacity_ki == 0:
        raise QuantityError(f"Node {capacity.name} reports zero capacity")

    return NodeUtilization(
        name=usage.name,
        cpu_cores_used=cpu_used,
        cpu_percent=cpu_used / cpu_capacity * 100.0,
        memory_bytes_used=ki_to_bytes(memory_used_ki),
        memory_percent=memory_used_ki / memory_capacity_ki * 100.0,
    )


def reconcile(
    capacities: Sequence[NodeCapacity],
    usages: Sequence[NodeUsage],
) -> List[NodeUtilization]:
    """Join usage records with capacity records by node name.

    Output order follows ``usages``.

    Raises:
        NodeNotFoundError: If a usage record has no capacity record
        QuantityError: If any node carries an unparsable quantity
    """
    by_name: Dict[str, NodeCapacity] = {}
    for capacity in capacities:
        # First entry wins on duplicate names
        by_name.setdefault(capacity.name, capacity)

    items = []
    for usage in usages:
        capacity = by_name.get(usage.name)
        if capacity is None:
            raise NodeNotFoundError(usage.name)
        items.append(compute_utilization(capacity, usage))

    return items


def utilization_report(items: Sequence[NodeUtilization]) -> Dict[str, Any]:
    """Shape a utilization list as ``{"items": [...]}``."""
    return {"items": [item.to_dict() for item in items]}


class MetricsReconciler:
    """Fetches node inventory and metrics concurrently and joins them."""

    def __init__(self, client: KubernetesClient):
        self.client = client

    async def _fetch(self, endpoint: str) -> str:
        # requests is blocking, keep it off the event loop
        return await asyncio.to_thread(self.client.fetch, endpoint)

    async def fetch_both(self) -> tuple[str, str]:
        """Fetch the node list and node metrics bodies concurrently.

        Both fetches must complete before either body is returned. If one
        fails, the other is cancelled and the first error is raised.

        Returns:
            Tuple of (nodes body, metrics body)

        Raises:
            KubernetesError: If either fetch fails
        """
        try:
            async with asyncio.TaskGroup() as group:
                nodes_task = group.create_task(self._fetch(NODES_ENDPOINT))
                metrics_task = group.create_task(self._fetch(NODE_METRICS_ENDPOINT))
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None

        return nodes_task.result(), metrics_task.result()

    async def get_utilization(self) -> List[NodeUtilization]:
        """Compute utilization for every node reported by the metrics API.

        Returns:
            List of NodeUtilization in metrics-list order

        Raises:
            TransportError: If either fetch fails
            DataFormatError: If either body cannot be parsed
            NodeNotFoundError: If a metrics entry has no inventory entry
            QuantityError: If any quantity cannot be parsed
        """
        nodes_body, metrics_body = await self.fetch_both()

        capacities = parse_node_list(nodes_body)
        usages = parse_node_metrics(metrics_body)
        logger.debug(f"Parsed {len(capacities)} nodes and {len(usages)} node metrics")

        items = reconcile(capacities, usages)
        logger.info(f"Computed utilization for {len(items)} nodes")
        return items
