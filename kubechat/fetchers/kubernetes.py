"""Kubernetes API server client.

Issues authenticated GET requests against the API server REST interface and
returns raw response bodies. Parsing is left to the callers.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
import structlog

from kubechat.fetchers.base import AuthenticationError, TransportError

logger = structlog.get_logger("kubechat.fetchers.kubernetes")

# Mounted into pods that run under a service account
SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
SERVICE_ACCOUNT_CA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"


class KubernetesClient:
    """Minimal client for read-only Kubernetes API endpoints.

    Certificate trust is decided once, at construction:
        - ca_cert: path to a CA bundle used to verify the API server
        - insecure_skip_tls_verify: accept any certificate (non-production only)
        - neither: use the system trust store

    The client performs a single attempt per call. There is no caching and no
    retry; callers that need resilience must add it around fetch().
    """

    def __init__(
        self,
        api_server: str,
        token: str,
        ca_cert: Optional[str] = None,
        insecure_skip_tls_verify: bool = False,
        timeout: Optional[float] = None,
    ):
        """Initialize the client.

        Args:
            api_server: Base URL of the API server, e.g. ``https://10.0.0.1:6443``
            token: Bearer token sent with every request
            ca_cert: Optional path to a trusted CA bundle
            insecure_skip_tls_verify: Disable certificate verification
            timeout: Optional request timeout in seconds
        """
        if not api_server.startswith(("http://", "https://")):
            raise ValueError("Kubernetes API server must start with http:// or https://")

        self.api_server = api_server.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.verify: Union[bool, str]
        if ca_cert:
            self.verify = ca_cert
        elif insecure_skip_tls_verify:
            self.verify = False
        else:
            self.verify = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "KubernetesClient":
        """Build a client from ``Config.get_kubernetes_config()`` output.

        An explicit token wins over ``token_file``. When neither is set and
        the process runs in a pod, the mounted service-account token is used,
        together with the mounted CA bundle unless a CA or insecure mode was
        configured.

        Raises:
            ValueError: If no token can be found
        """
        token = config.get("token")
        token_file = config.get("token_file")
        ca_cert = config.get("ca_cert")
        insecure = config.get("insecure_skip_tls_verify", False)

        if not token and not token_file and Path(SERVICE_ACCOUNT_TOKEN_PATH).is_file():
            logger.debug("Using in-cluster service account token")
            token_file = SERVICE_ACCOUNT_TOKEN_PATH
            if not ca_cert and not insecure and Path(SERVICE_ACCOUNT_CA_PATH).is_file():
                ca_cert = SERVICE_ACCOUNT_CA_PATH

        if not token and token_file:
            try:
                token = Path(token_file).read_text(encoding="utf-8").strip()
            except OSError as e:
                raise ValueError(f"Cannot read Kubernetes token file {token_file}: {e}") from e

        if not token:
            raise ValueError("Kubernetes bearer token is required (set kube_token or kube_token_file)")

        return cls(
            api_server=config["api_server"],
            token=token,
            ca_cert=ca_cert,
            insecure_skip_tls_verify=insecure,
            timeout=config.get("timeout"),
        )

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers including authentication."""
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
        }

    def fetch(self, endpoint: str) -> str:
        """Fetch the raw body of ``GET {api_server}{endpoint}``.

        Args:
            endpoint: Absolute API path, e.g. ``/api/v1/nodes``

        Returns:
            Response body as text

        Raises:
            AuthenticationError: If the API server answers 401 or 403
            TransportError: On connection, TLS, timeout or non-2xx failures
        """
        url = f"{self.api_server}{endpoint}"
        logger.debug(f"Requesting {url}")

        try:
            response = requests.get(
                url,
                headers=self._get_headers(),
                verify=self.verify,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Request to {url} timed out")
            raise TransportError(f"Kubernetes API request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Error sending request to Kubernetes API server: {e}")
            raise TransportError(f"Failed to reach Kubernetes API server: {e}") from e

        if response.status_code in (401, 403):
            logger.warning(f"Kubernetes API rejected credentials for {endpoint}", status=response.status_code)
            raise AuthenticationError(
                f"Kubernetes API authentication failed ({response.status_code}) for {endpoint}"
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            logger.error(f"Kubernetes API returned an error for {endpoint}", status=response.status_code)
            raise TransportError(f"Kubernetes API error for {endpoint}: {e}") from e

        body = response.text
        logger.debug(f"Received {len(body)} bytes from {endpoint}")
        return body

    def __repr__(self) -> str:
        """String representation without credentials."""
        return f"KubernetesClient(api_server='{self.api_server}')"
