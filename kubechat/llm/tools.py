"""Tools the chat model may call while answering."""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict

from kubechat.fetchers.metrics import MetricsReconciler, utilization_report


class Tool(ABC):
    """A function exposed to the model.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON
    schema object) and implement ``call``.
    """

    name: str = ""
    description: str = ""
    parameters: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    def to_openai_spec(self) -> Dict[str, Any]:
        """Return the tool definition in chat completions format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    @abstractmethod
    async def call(self, arguments: Dict[str, Any]) -> str:
        """Run the tool and return its result as text for the model."""
        pass


class NodeMetricsTool(Tool):
    """Reports CPU and memory utilization of every cluster node."""

    name = "get_node_metrics"
    description = "Get node metrics (CPU and memory usage) from the Kubernetes cluster."

    def __init__(self, reconciler: MetricsReconciler):
        self.reconciler = reconciler

    async def call(self, arguments: Dict[str, Any]) -> str:
        items = await self.reconciler.get_utilization()
        return json.dumps(utilization_report(items))
