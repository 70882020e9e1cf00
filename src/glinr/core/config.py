"""Configuration types with environment variable support.

All settings can be configured via environment variables with the GLINR_ prefix.
Example: GLINR_CLOUDFLARE_API_TOKEN=... enables Cloudflare auto-configuration.

Settings can also be loaded from a YAML or TOML file; nested sections are
flattened into the same keys the environment uses:

    acme:
      email: ops@example.com      # -> acme_email
    proxy:
      nginx_conf_path: /etc/nginx/conf.d/glinr.conf
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LETSENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


_SETTINGS = SettingsConfigDict(
    env_prefix="GLINR_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)


class DNSConfig(BaseSettings):
    """Resolver settings used for TXT challenge checks and zone detection."""

    model_config = _SETTINGS

    dns_nameservers: list[str] = Field(
        default_factory=list,
        description="Resolver IPs to query. Empty uses the system resolvers.",
    )
    dns_timeout: float = Field(
        default=10.0,
        description="Per-lookup timeout (seconds).",
    )
    dns_tries: int = Field(
        default=2,
        ge=1,
        description="Attempts per resolver before giving up.",
    )
    dns_verify_enabled: bool = Field(
        default=True,
        description="Enable TXT-record domain verification.",
    )
    public_edge_host: str = Field(
        default="edge.glinr.local",
        description="Public hostname of this platform; custom domains CNAME to it.",
    )


class CloudflareConfig(BaseSettings):
    """Cloudflare API access for DNS auto-configuration."""

    model_config = _SETTINGS

    cloudflare_api_token: str | None = Field(
        default=None,
        repr=False,
        description="Cloudflare API token with Zone.DNS edit permission.",
    )
    cloudflare_base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare API base URL.",
    )
    cloudflare_timeout: float = Field(
        default=30.0,
        description="Cloudflare API request timeout (seconds).",
    )
    cloudflare_proxied: bool = Field(
        default=False,
        description="Create CNAME records with the Cloudflare proxy enabled.",
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.cloudflare_api_token)


class ACMEConfig(BaseSettings):
    """ACME (Let's Encrypt compatible) certificate authority settings."""

    model_config = _SETTINGS

    acme_directory_url: str = Field(
        default=LETSENCRYPT_DIRECTORY,
        description="ACME directory URL.",
    )
    acme_email: str | None = Field(
        default=None,
        description="Default contact email for ACME account registration.",
    )
    acme_timeout: float = Field(
        default=120.0,
        description="Upper bound for one complete issuance (seconds).",
    )
    acme_poll_interval: float = Field(
        default=2.0,
        description="Delay between ACME order/authorization polls (seconds).",
    )
    acme_poll_attempts: int = Field(
        default=30,
        description="Maximum ACME polls before an order is considered stuck.",
    )
    acme_webroot: str = Field(
        default="/var/lib/glinr/acme-http01",
        description="Directory served at /.well-known/acme-challenge/ for HTTP-01.",
    )
    certs_dir: str = Field(
        default="/var/lib/glinr/certs",
        description="Directory where issued certificates and keys are stored.",
    )
    renew_before_days: int = Field(
        default=30,
        ge=1,
        description="Renew certificates expiring within this many days.",
    )
    renewal_check_interval: float = Field(
        default=86400.0,
        description="Renewal scan interval (seconds).",
    )


class ProxyConfig(BaseSettings):
    """nginx reverse proxy settings."""

    model_config = _SETTINGS

    nginx_conf_path: str = Field(
        default="/var/lib/glinr/nginx/conf/generated.server.conf",
        description="File the generated configuration is written to.",
    )
    nginx_cmd: str = Field(
        default="nginx",
        description="nginx binary (may include arguments, e.g. 'docker exec proxy nginx').",
    )
    nginx_validate_binary: bool = Field(
        default=True,
        description="Run 'nginx -t' when the binary is available.",
    )
    nginx_reload_enabled: bool = Field(
        default=True,
        description="Signal nginx to reload after a configuration change.",
    )
    proxy_timeout: float = Field(
        default=30.0,
        description="Timeout for validate and reload commands (seconds).",
    )
    default_upstream: str = Field(
        default="127.0.0.1:8080",
        description="Upstream used by the catch-all default backend.",
    )


class PipelineConfig(BaseSettings):
    """Provisioning pipeline retry bounds."""

    model_config = _SETTINGS

    verify_attempts: int = Field(
        default=5,
        ge=1,
        description="DNS verification checks before the run fails.",
    )
    verify_backoff_step: float = Field(
        default=10.0,
        ge=0.0,
        description="Linear backoff step: attempt i waits i * step seconds.",
    )
    provider_timeout: float = Field(
        default=60.0,
        description="Timeout for DNS auto-configuration during a run (seconds).",
    )


class StorageConfig(BaseSettings):
    model_config = _SETTINGS

    storage_path: str = Field(
        default="glinr.json",
        description="Path to the JSON file holding domains, certificates and routes.",
    )


_SECTIONS: dict[str, type[BaseSettings]] = {
    "dns": DNSConfig,
    "cloudflare": CloudflareConfig,
    "acme": ACMEConfig,
    "proxy": ProxyConfig,
    "pipeline": PipelineConfig,
    "storage": StorageConfig,
}


class GlinrConfig(BaseModel):
    """Master configuration combining all settings.

    Each section reads GLINR_* environment variables; values passed explicitly
    (for example from a config file) take precedence.

    Example:
        config = get_config()
        print(config.acme.acme_directory_url)
        print(config.pipeline.verify_attempts)
    """

    dns: DNSConfig = Field(default_factory=DNSConfig)
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)
    acme: ACMEConfig = Field(default_factory=ACMEConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> GlinrConfig:
        """Build a configuration from flattened keys (see flatten_config)."""
        sections: dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            overrides = {k: v for k, v in values.items() if k in section_cls.model_fields}
            sections[name] = section_cls(**overrides)
        return cls(**sections)

    @classmethod
    def from_file(cls, path: str | Path) -> GlinrConfig:
        return cls.from_mapping(flatten_config(load_config_from_file(path)))

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display.

        Secrets are masked.
        """
        cloudflare = self.cloudflare.model_dump()
        if cloudflare.get("cloudflare_api_token"):
            cloudflare["cloudflare_api_token"] = "********"
        return {
            "dns": self.dns.model_dump(),
            "cloudflare": cloudflare,
            "acme": self.acme.model_dump(),
            "proxy": self.proxy.model_dump(),
            "pipeline": self.pipeline.model_dump(),
            "storage": self.storage.model_dump(),
        }


_config: GlinrConfig | None = None


def get_config() -> GlinrConfig:
    """Get the global configuration instance.

    The instance is created once and cached for the lifetime of the process.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = GlinrConfig()
    return _config


def set_config(config: GlinrConfig) -> None:
    global _config
    _config = config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
