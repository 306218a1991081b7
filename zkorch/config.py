"""
Configuration management for zkorch.

Two layers:
- Config: per-invocation options from the command line (verbosity,
  dry-run, package override). Built once by the CLI and passed explicitly
  to everything that needs it.
- Settings: optional project settings loaded from zkorch.yaml at the
  project root, plus environment variables from .env/.secrets files.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values

from zkorch.errors import ConfigError


SETTINGS_FILENAME = "zkorch.yaml"

DEFAULT_NETWORK = "sepolia"
DEFAULT_ENV_FILES = (".env", ".secrets")
DEFAULT_STARKNET_RPC_ENV = {
    "sepolia": "SEPOLIA_RPC_URL",
    "mainnet": "MAINNET_RPC_URL",
}


@dataclass(frozen=True)
class Config:
    """Options for a single zkorch invocation."""

    verbose: bool = False
    dry_run: bool = False
    quiet: bool = False
    package: Optional[str] = None
    log_file: Optional[Path] = None

    def __post_init__(self):
        if self.verbose and self.quiet:
            raise ConfigError("--verbose and --quiet are mutually exclusive")


@dataclass
class Settings:
    """Project settings from zkorch.yaml (all keys optional)."""

    network: str = DEFAULT_NETWORK
    env_files: list[str] = field(default_factory=lambda: list(DEFAULT_ENV_FILES))
    starknet_rpc_env: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STARKNET_RPC_ENV))
    starknet_account_env: str = "STARKNET_ACCOUNT"
    starknet_keystore_env: str = "STARKNET_KEYSTORE"
    evm_rpc_env: str = "RPC_URL"
    evm_private_key_env: str = "PRIVATE_KEY"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Build settings from parsed YAML, validating types."""
        settings = cls()
        if not data:
            return settings
        if not isinstance(data, dict):
            raise ConfigError(f"{SETTINGS_FILENAME} must contain a mapping at the top level")

        if "network" in data:
            settings.network = _expect_str(data["network"], "network")
        if "env_files" in data:
            env_files = data["env_files"]
            if not isinstance(env_files, list) or not all(isinstance(f, str) for f in env_files):
                raise ConfigError(f"{SETTINGS_FILENAME}: 'env_files' must be a list of file names")
            settings.env_files = env_files

        starknet = _expect_section(data, "starknet")
        if "rpc_env" in starknet:
            rpc_env = starknet["rpc_env"]
            if not isinstance(rpc_env, dict):
                raise ConfigError(f"{SETTINGS_FILENAME}: 'starknet.rpc_env' must map network names to variables")
            settings.starknet_rpc_env.update({str(k): _expect_str(v, f"starknet.rpc_env.{k}") for k, v in rpc_env.items()})
        if "account_env" in starknet:
            settings.starknet_account_env = _expect_str(starknet["account_env"], "starknet.account_env")
        if "keystore_env" in starknet:
            settings.starknet_keystore_env = _expect_str(starknet["keystore_env"], "starknet.keystore_env")

        evm = _expect_section(data, "evm")
        if "rpc_env" in evm:
            settings.evm_rpc_env = _expect_str(evm["rpc_env"], "evm.rpc_env")
        if "private_key_env" in evm:
            settings.evm_private_key_env = _expect_str(evm["private_key_env"], "evm.private_key_env")

        return settings


def _expect_str(value: Any, key: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{SETTINGS_FILENAME}: '{key}' must be a non-empty string")
    return value


def _expect_section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{SETTINGS_FILENAME}: '{key}' must be a mapping")
    return section


def load_settings(root: Path) -> Settings:
    """
    Load settings from <root>/zkorch.yaml.

    Args:
        root: Project root directory

    Returns:
        Settings (defaults when the file does not exist)

    Raises:
        ConfigError: If the file is not valid YAML or has wrong types
    """
    settings_path = root / SETTINGS_FILENAME
    if not settings_path.exists():
        return Settings()

    try:
        with open(settings_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {settings_path}: {e}")

    return Settings.from_dict(data or {})


def load_environment(
    root: Path,
    settings: Settings,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Merge env files from the project root under the process environment.

    Later files win over earlier ones; the process environment wins over
    all files. Returns a new mapping, os.environ is left untouched.
    """
    merged: Dict[str, str] = {}
    for name in settings.env_files:
        env_path = root / name
        if env_path.is_file():
            values = dotenv_values(env_path)
            merged.update({k: v for k, v in values.items() if v is not None})

    merged.update(os.environ if base is None else base)
    return merged


def require_env(env: Mapping[str, str], name: str, example: str = "") -> str:
    """Return an environment value or raise ConfigError with a hint."""
    value = env.get(name)
    if value:
        return value
    hint = f"Add to your .env file: {name}={example or '...'}"
    raise ConfigError(
        f"{name} environment variable not found",
        [hint, "Files listed in zkorch.yaml 'env_files' are loaded from the project root"],
    )
