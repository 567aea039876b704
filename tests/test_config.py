from pathlib import Path

import pytest

from ethcli import config as config_module
from ethcli.config import ConfigurationError, ProviderConfig, load_provider_config


@pytest.fixture(autouse=True)
def reset_config_override():
    config_module.set_default_config_path(None)
    yield
    config_module.set_default_config_path(None)


def test_environment_overrides_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        providers:
          alchemy: file-alchemy
          infura: file-infura
        endpoints:
          sepolia: https://sepolia.example.org
        """
    )
    env = {
        "ETHCLI_ALCHEMY_API_KEY": "env-alchemy",
        "ETHCLI_RPC_URL_HOLESKY": "http://localhost:8545",
    }

    loaded = load_provider_config(config_path=config_path, env=env)

    assert loaded.api_key("alchemy") == "env-alchemy"
    assert loaded.api_key("infura") == "file-infura"
    assert loaded.api_key("etherscan") is None
    assert loaded.endpoint_for("sepolia") == "https://sepolia.example.org"
    assert loaded.endpoint_for("holesky") == "http://localhost:8545"


def test_mainnet_endpoints_are_stored_as_homestead(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("endpoints:\n  Mainnet: https://file.example.org\n")

    from_file = load_provider_config(config_path=config_path, env={})
    from_env = load_provider_config(
        config_path=config_path, env={"ETHCLI_RPC_URL_MAINNET": "http://localhost:8545"}
    )

    assert from_file.endpoints == {"homestead": "https://file.example.org"}
    assert from_file.endpoint_for("mainnet") == "https://file.example.org"
    assert from_env.endpoint_for("homestead") == "http://localhost:8545"


def test_overrides_take_precedence(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    loaded = load_provider_config(
        env={"ETHCLI_INFURA_PROJECT_ID": "env-infura"},
        overrides={"infura": "override-infura"},
    )

    assert loaded.infura_project_id == "override-infura"


def test_missing_default_file_is_not_an_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")

    loaded = load_provider_config(env={})

    assert loaded == ProviderConfig()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Config file not found"):
        load_provider_config(config_path=tmp_path / "absent.yaml", env={})


def test_env_config_path_is_used(tmp_path: Path) -> None:
    config_path = tmp_path / "ethcli.yaml"
    config_path.write_text("providers:\n  etherscan: scan-key\n")

    loaded = load_provider_config(env={"ETHCLI_CONFIG": str(config_path)})

    assert loaded.etherscan_api_key == "scan-key"


def test_invalid_endpoint_url_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("endpoints:\n  homestead: ftp://example.org\n")

    with pytest.raises(ConfigurationError, match="Invalid RPC endpoint URL"):
        load_provider_config(config_path=config_path, env={})


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError, match="YAML mapping"):
        load_provider_config(config_path=config_path, env={})
