"""
Configuration management for kubechat.

Implements multi-level configuration loading with precedence:
1. Environment variables (highest priority)
2. .env files
3. Project config (./.kubechat/config.yaml)
4. User config (~/.kubechat/config.yaml)
5. System config (/etc/kubechat/config.yaml)
"""

from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict, YamlConfigSettingsSource, PydanticBaseSettingsSource


class Config(BaseSettings):
    """Complete configuration schema for kubechat with flat structure."""

    model_config = SettingsConfigDict(
        # Load from .env files in order of precedence (lowest to highest)
        env_file=[
            ".env.defaults",
            ".env",
            str(Path.home() / ".kubechat" / ".env"),
        ],
        # Load from YAML files in order of precedence (lowest to highest)
        yaml_file=[
            "/etc/kubechat/config.yaml",
            str(Path.home() / ".kubechat" / "config.yaml"),
            str(Path.cwd() / ".kubechat" / "config.yaml"),
        ],
        env_prefix="KUBECHAT_",
        case_sensitive=False,
        # Ignore unrelated variables found in .env files
        extra="ignore",
        # Allow Config(server_api_key=...) alongside the aliased env names
        populate_by_name=True,
        env_file_encoding="utf-8",
    )

    # =================================================================
    # Server Configuration
    # =================================================================

    server_host: str = Field(default="127.0.0.1", description="Address the HTTP server binds to")
    server_port: int = Field(default=8080, ge=0, le=65535, description="Port the HTTP server binds to")
    server_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("KUBECHAT_SERVER_API_KEY", "CHAT_API_KEY"),
        description="Shared secret expected in the X-Api-Key header",
    )
    server_max_connections: int = Field(
        default=8, ge=1, description="Maximum number of connections handled concurrently"
    )
    server_max_request_bytes: int = Field(
        default=100_000, ge=1024, description="Hard cap on the size of a single request"
    )
    server_read_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Timeout for reading a request from a client (unset = no timeout)"
    )

    # =================================================================
    # LLM Configuration
    # =================================================================

    llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KUBECHAT_LLM_API_KEY", "OPENAI_API_KEY"),
        description="API key for the OpenAI-compatible backend",
    )
    llm_model: str = Field(default="gpt-5.1", description="Model used for chat completions")
    llm_base_url: Optional[str] = Field(default=None, description="Base URL for OpenAI-compatible API")
    llm_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Timeout for a single completion request (unset = no timeout)"
    )
    llm_max_tool_rounds: int = Field(
        default=2, ge=0, description="Maximum rounds of tool calling per chat request"
    )

    # =================================================================
    # Kubernetes Configuration
    # =================================================================

    kube_api_server: str = Field(
        default="https://kubernetes.default.svc",
        validation_alias=AliasChoices("KUBECHAT_KUBE_API_SERVER", "KUBE_API_SERVER"),
        description="Base URL of the Kubernetes API server",
    )
    kube_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KUBECHAT_KUBE_TOKEN", "KUBE_TOKEN"),
        description="Bearer token for the API server",
    )
    kube_token_file: Optional[str] = Field(
        default=None,
        description="File containing the bearer token (used when kube_token is unset; in a pod the service account token is the fallback)",
    )
    kube_ca_cert: Optional[str] = Field(
        default=None, description="Path to the CA bundle trusted for the API server"
    )
    kube_insecure_skip_tls_verify: bool = Field(
        default=False, description="Accept any server certificate (non-production only)"
    )
    kube_timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Timeout for API server requests (unset = no timeout)"
    )

    # =================================================================
    # Logging
    # =================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Minimum level of emitted log events"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include YAML support."""
        yaml_settings = YamlConfigSettingsSource(settings_cls)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def get_kubernetes_config(self) -> Dict[str, Any]:
        """Get Kubernetes client configuration."""
        return {
            "api_server": self.kube_api_server,
            "token": self.kube_token,
            "token_file": self.kube_token_file,
            "ca_cert": self.kube_ca_cert,
            "insecure_skip_tls_verify": self.kube_insecure_skip_tls_verify,
            "timeout": self.kube_timeout_seconds,
        }

    def get_llm_config(self) -> Dict[str, Any]:
        """Get LLM backend configuration."""
        return {
            "api_key": self.llm_api_key,
            "model": self.llm_model,
            "base_url": self.llm_base_url,
            "timeout": self.llm_timeout_seconds,
            "max_tool_rounds": self.llm_max_tool_rounds,
        }

    def get_server_config(self) -> Dict[str, Any]:
        """Get HTTP server configuration (without the API key)."""
        return {
            "host": self.server_host,
            "port": self.server_port,
            "max_connections": self.server_max_connections,
            "max_request_bytes": self.server_max_request_bytes,
            "read_timeout": self.server_read_timeout_seconds,
        }


def load_config() -> Config:
    """
    Load configuration from all sources with proper precedence.

    Returns:
        Config: The loaded and validated configuration

    Examples:
        >>> config = load_config()
        >>> config.server_port
        8080

        Environment variable override:
        # export KUBECHAT_SERVER_PORT=9090
        >>> load_config().server_port
        9090

        Using .env file:
        # .env
        KUBECHAT_SERVER_API_KEY=change-me
        KUBECHAT_KUBE_API_SERVER=https://127.0.0.1:6443
        KUBECHAT_KUBE_TOKEN_FILE=/var/run/secrets/kubernetes.io/serviceaccount/token
        OPENAI_API_KEY=sk-your-key-here
    """
    return Config()
