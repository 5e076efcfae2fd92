"""Exception hierarchy for Kubernetes data access.

Every failure raised while talking to the API server or interpreting its
responses derives from KubernetesError, so callers can treat the whole
fetch-parse-join pipeline as a single all-or-nothing operation.
"""


class KubernetesError(Exception):
    """Base exception for Kubernetes operations."""

    pass


class TransportError(KubernetesError):
    """Raised when a request to the API server fails."""

    pass


class AuthenticationError(TransportError):
    """Raised when the API server rejects the bearer token."""

    pass


class DataFormatError(KubernetesError):
    """Raised when a response body does not have the expected structure."""

    pass


class QuantityError(DataFormatError):
    """Raised when a resource quantity string cannot be parsed."""

    pass


class NodeNotFoundError(KubernetesError):
    """Raised when a metrics entry has no matching node in the inventory."""

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"No matching node found for metrics: {node_name}")
