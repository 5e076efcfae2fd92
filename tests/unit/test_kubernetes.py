"""Unit tests for the Kubernetes API client."""

from unittest.mock import Mock, patch

import pytest
import requests

from kubechat.fetchers import kubernetes
from kubechat.fetchers.base import AuthenticationError, TransportError
from kubechat.fetchers.kubernetes import KubernetesClient


@pytest.fixture(autouse=True)
def service_account(monkeypatch, tmp_path):
    """Point the in-cluster credential paths at a temporary directory."""
    mount = tmp_path / "serviceaccount"
    mount.mkdir()
    monkeypatch.setattr(kubernetes, "SERVICE_ACCOUNT_TOKEN_PATH", str(mount / "token"))
    monkeypatch.setattr(kubernetes, "SERVICE_ACCOUNT_CA_PATH", str(mount / "ca.crt"))
    return mount


@pytest.fixture
def client():
    """Client against a test API server."""
    return KubernetesClient(api_server="https://k8s.example.com:6443/", token="secret-token")


def _response(status_code=200, text="{}"):
    response = Mock()
    response.status_code = status_code
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} Error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestKubernetesClientInit:
    """Tests for client construction."""

    def test_strips_trailing_slash(self, client):
        assert client.api_server == "https://k8s.example.com:6443"

    def test_rejects_url_without_scheme(self):
        with pytest.raises(ValueError, match="http:// or https://"):
            KubernetesClient(api_server="k8s.example.com", token="t")

    def test_verify_defaults_to_system_trust(self, client):
        assert client.verify is True

    def test_verify_with_ca_cert(self):
        client = KubernetesClient("https://k8s", "t", ca_cert="/etc/ca.crt")
        assert client.verify == "/etc/ca.crt"

    def test_verify_insecure(self):
        client = KubernetesClient("https://k8s", "t", insecure_skip_tls_verify=True)
        assert client.verify is False

    def test_repr_hides_token(self, client):
        assert "secret-token" not in repr(client)


class TestFromConfig:
    """Tests for building clients from configuration."""

    def test_explicit_token(self):
        client = KubernetesClient.from_config({"api_server": "https://k8s", "token": "abc", "timeout": 5.0})
        assert client.token == "abc"
        assert client.timeout == 5.0

    def test_token_file(self, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("from-file\n")
        client = KubernetesClient.from_config({"api_server": "https://k8s", "token_file": str(token_file)})
        assert client.token == "from-file"

    def test_explicit_token_wins_over_file(self, tmp_path):
        token_file = tmp_path / "token"
        token_file.write_text("from-file")
        client = KubernetesClient.from_config(
            {"api_server": "https://k8s", "token": "explicit", "token_file": str(token_file)}
        )
        assert client.token == "explicit"

    def test_missing_token_file(self, tmp_path):
        with pytest.raises(ValueError, match="Cannot read Kubernetes token file"):
            KubernetesClient.from_config({"api_server": "https://k8s", "token_file": str(tmp_path / "missing")})

    def test_no_token(self):
        with pytest.raises(ValueError, match="bearer token is required"):
            KubernetesClient.from_config({"api_server": "https://k8s"})

    def test_in_cluster_token_and_ca(self, service_account):
        (service_account / "token").write_text("pod-token\n")
        (service_account / "ca.crt").write_text("-----BEGIN CERTIFICATE-----\n")

        client = KubernetesClient.from_config({"api_server": "https://kubernetes.default.svc"})

        assert client.token == "pod-token"
        assert client.verify == str(service_account / "ca.crt")

    def test_in_cluster_token_without_ca(self, service_account):
        (service_account / "token").write_text("pod-token")

        client = KubernetesClient.from_config({"api_server": "https://kubernetes.default.svc"})

        assert client.token == "pod-token"
        assert client.verify is True

    def test_in_cluster_respects_configured_trust(self, service_account):
        (service_account / "token").write_text("pod-token")
        (service_account / "ca.crt").write_text("ca")

        custom = KubernetesClient.from_config({"api_server": "https://k8s", "ca_cert": "/etc/custom-ca.crt"})
        insecure = KubernetesClient.from_config({"api_server": "https://k8s", "insecure_skip_tls_verify": True})

        assert custom.verify == "/etc/custom-ca.crt"
        assert insecure.verify is False

    def test_explicit_token_skips_in_cluster_credentials(self, service_account):
        (service_account / "token").write_text("pod-token")
        (service_account / "ca.crt").write_text("ca")

        client = KubernetesClient.from_config({"api_server": "https://k8s", "token": "explicit"})

        assert client.token == "explicit"
        assert client.verify is True


class TestFetch:
    """Tests for fetch()."""

    @patch("kubechat.fetchers.kubernetes.requests.get")
    def test_fetch_success(self, mock_get, client):
        mock_get.return_value = _response(text='{"items": []}')

        body = client.fetch("/api/v1/nodes")

        assert body == '{"items": []}'
        mock_get.assert_called_once_with(
            "https://k8s.example.com:6443/api/v1/nodes",
            headers={"Accept": "application/json", "Authorization": "Bearer secret-token"},
            verify=True,
            timeout=None,
        )

    @patch("kubechat.fetchers.kubernetes.requests.get")
    def test_fetch_connection_error(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError, match="Failed to reach"):
            client.fetch("/api/v1/nodes")

    @patch("kubechat.fetchers.kubernetes.requests.get")
    def test_fetch_timeout(self, mock_get, client):
        mock_get.side_effect = requests.exceptions.Timeout()

        with pytest.raises(TransportError, match="timed out"):
            client.fetch("/api/v1/nodes")

    @pytest.mark.parametrize("status", [401, 403])
    @patch("kubechat.fetchers.kubernetes.requests.get")
    def test_fetch_auth_failure(self, mock_get, status, client):
        mock_get.return_value = _response(status_code=status)

        with pytest.raises(AuthenticationError):
            client.fetch("/api/v1/nodes")

    @patch("kubechat.fetchers.kubernetes.requests.get")
    def test_fetch_server_error(self, mock_get, client):
        mock_get.return_value = _response(status_code=503)

        with pytest.raises(TransportError) as exc_info:
            client.fetch("/apis/metrics.k8s.io/v1beta1/nodes")

        assert not isinstance(exc_info.value, AuthenticationError)
