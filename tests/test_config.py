"""Tests for configuration loading."""

import pytest

from zkorch.config import Config, Settings, load_environment, load_settings, require_env
from zkorch.errors import ConfigError


class TestConfig:
    """Tests for per-invocation Config."""

    def test_defaults(self):
        config = Config()
        assert not config.verbose
        assert not config.dry_run
        assert config.package is None

    def test_verbose_and_quiet_conflict(self):
        with pytest.raises(ConfigError, match="mutually exclusive"):
            Config(verbose=True, quiet=True)


class TestLoadSettings:
    """Tests for zkorch.yaml."""

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path)
        assert settings.network == "sepolia"
        assert settings.env_files == [".env", ".secrets"]
        assert settings.starknet_rpc_env["mainnet"] == "MAINNET_RPC_URL"

    def test_empty_file(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text("")
        assert load_settings(tmp_path) == Settings()

    def test_full_file(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text(
            "network: mainnet\n"
            "env_files: [.env.local]\n"
            "starknet:\n"
            "  rpc_env:\n"
            "    devnet: DEVNET_RPC\n"
            "  account_env: SN_ACCOUNT\n"
            "evm:\n"
            "  rpc_env: ETH_RPC_URL\n"
        )
        settings = load_settings(tmp_path)
        assert settings.network == "mainnet"
        assert settings.env_files == [".env.local"]
        assert settings.starknet_rpc_env == {
            "sepolia": "SEPOLIA_RPC_URL",
            "mainnet": "MAINNET_RPC_URL",
            "devnet": "DEVNET_RPC",
        }
        assert settings.starknet_account_env == "SN_ACCOUNT"
        assert settings.starknet_keystore_env == "STARKNET_KEYSTORE"
        assert settings.evm_rpc_env == "ETH_RPC_URL"

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text("network: [\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(tmp_path)

    def test_not_a_mapping(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text("- sepolia\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(tmp_path)

    def test_wrong_type(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text("network: 5\n")
        with pytest.raises(ConfigError, match="'network' must be a non-empty string"):
            load_settings(tmp_path)

    def test_wrong_section_type(self, tmp_path):
        (tmp_path / "zkorch.yaml").write_text("starknet: sepolia\n")
        with pytest.raises(ConfigError, match="'starknet' must be a mapping"):
            load_settings(tmp_path)


class TestLoadEnvironment:
    """Tests for env file layering."""

    def test_files_under_process_env(self, tmp_path):
        """The process environment wins over files; later files win over earlier ones."""
        (tmp_path / ".env").write_text("RPC_URL=from-env\nPRIVATE_KEY=env-key\nSHARED=env\n")
        (tmp_path / ".secrets").write_text("PRIVATE_KEY=secret-key\n")
        env = load_environment(tmp_path, Settings(), {"SHARED": "process"})
        assert env == {"RPC_URL": "from-env", "PRIVATE_KEY": "secret-key", "SHARED": "process"}

    def test_missing_files_ignored(self, tmp_path):
        assert load_environment(tmp_path, Settings(), {"A": "1"}) == {"A": "1"}

    def test_custom_env_files(self, tmp_path):
        (tmp_path / ".env").write_text("A=ignored\n")
        (tmp_path / "deploy.env").write_text("A=used\n")
        settings = Settings(env_files=["deploy.env"])
        assert load_environment(tmp_path, settings, {}) == {"A": "used"}

    def test_defaults_to_os_environ(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ZKORCH_CONFIG_TEST", "yes")
        assert load_environment(tmp_path, Settings())["ZKORCH_CONFIG_TEST"] == "yes"


class TestRequireEnv:
    """Tests for require_env."""

    def test_present(self):
        assert require_env({"RPC_URL": "http://x"}, "RPC_URL") == "http://x"

    def test_missing(self):
        with pytest.raises(ConfigError) as exc_info:
            require_env({}, "STARKNET_ACCOUNT", "path/to/account.json")
        assert str(exc_info.value) == "STARKNET_ACCOUNT environment variable not found"
        assert exc_info.value.suggestions[0] == "Add to your .env file: STARKNET_ACCOUNT=path/to/account.json"

    def test_empty_is_missing(self):
        with pytest.raises(ConfigError):
            require_env({"PRIVATE_KEY": ""}, "PRIVATE_KEY")
