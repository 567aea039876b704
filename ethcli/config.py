"""Shared configuration loader for ethcli provider credentials."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".ethcli.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

_PROVIDER_ENV_KEYS = {
    "alchemy": "ETHCLI_ALCHEMY_API_KEY",
    "etherscan": "ETHCLI_ETHERSCAN_API_KEY",
    "infura": "ETHCLI_INFURA_PROJECT_ID",
    "nodesmith": "ETHCLI_NODESMITH_API_KEY",
}
_ENDPOINT_ENV_PREFIX = "ETHCLI_RPC_URL_"
NETWORK_ALIASES = {"mainnet": "homestead"}


@dataclass
class ProviderConfig:
    """API keys for hosted providers plus per-network endpoint overrides."""

    alchemy_api_key: str | None = None
    etherscan_api_key: str | None = None
    infura_project_id: str | None = None
    nodesmith_api_key: str | None = None
    endpoints: dict[str, str] = field(default_factory=dict)

    def api_key(self, provider: str) -> str | None:
        return {
            "alchemy": self.alchemy_api_key,
            "etherscan": self.etherscan_api_key,
            "infura": self.infura_project_id,
            "nodesmith": self.nodesmith_api_key,
        }.get(provider)

    def endpoint_for(self, network: str) -> str | None:
        return self.endpoints.get(normalize_network_name(network))


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def normalize_network_name(name: str) -> str:
    key = str(name).lower()
    return NETWORK_ALIASES.get(key, key)


def _validate_endpoint(raw: str, *, source: str) -> str:
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL in {source}: {raw}")
    return raw


def load_provider_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ProviderConfig:
    """Load provider settings from environment variables and optional YAML.

    Precedence is ``overrides`` > environment > config file. The file lives at
    ``~/.ethcli.yaml`` unless ``ETHCLI_CONFIG`` or
    :func:`set_default_config_path` points elsewhere::

        providers:
          alchemy: <api key>
          infura: <project id>
        endpoints:
          sepolia: https://rpc.example.org
    """

    env_map = os.environ if env is None else env
    env_path = env_map.get("ETHCLI_CONFIG")
    explicit_path = (
        config_path is not None or _CONFIG_PATH_OVERRIDE is not None or bool(env_path)
    )
    if config_path is not None:
        path = Path(config_path).expanduser()
    elif _CONFIG_PATH_OVERRIDE is not None:
        path = _CONFIG_PATH_OVERRIDE
    elif env_path:
        path = Path(env_path).expanduser()
    else:
        path = DEFAULT_CONFIG_PATH

    file_config = _load_config_file(path, required=explicit_path)
    providers_section = _section(file_config, "providers", path)
    endpoints_section = _section(file_config, "endpoints", path)

    override_map = dict(overrides or {})

    keys: dict[str, str | None] = {}
    for provider, env_key in _PROVIDER_ENV_KEYS.items():
        keys[provider] = _first_value(
            override_map.get(provider), env_map.get(env_key), providers_section.get(provider)
        )

    endpoints: dict[str, str] = {}
    for network, url in endpoints_section.items():
        endpoints[normalize_network_name(network)] = _validate_endpoint(
            str(url), source=f"{path} endpoints.{network}"
        )
    for env_key, url in env_map.items():
        if env_key.startswith(_ENDPOINT_ENV_PREFIX) and url:
            network = normalize_network_name(env_key[len(_ENDPOINT_ENV_PREFIX) :])
            endpoints[network] = _validate_endpoint(url, source="environment")
    for network, url in dict(override_map.get("endpoints") or {}).items():
        endpoints[normalize_network_name(network)] = _validate_endpoint(url, source="overrides")

    return ProviderConfig(
        alchemy_api_key=keys["alchemy"],
        etherscan_api_key=keys["etherscan"],
        infura_project_id=keys["infura"],
        nodesmith_api_key=keys["nodesmith"],
        endpoints=endpoints,
    )
