"""Explicit configuration passed to every workflow stage."""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("~/.config/solana/cli/config.yml")
DEFAULT_KEYPAIR_PATH = "~/.config/solana/id.json"
DEFAULT_URL = "http://127.0.0.1:8899"

URL_MONIKERS = {
    "localhost": "http://localhost:8899",
    "l": "http://localhost:8899",
    "devnet": "https://api.devnet.solana.com",
    "d": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "t": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "m": "https://api.mainnet-beta.solana.com",
}

COMMITMENTS = ("processed", "confirmed", "finalized")

# solana CLI config.yml key -> Config field
_CLI_KEYS = {
    "json_rpc_url": "url",
    "keypair_path": "keypair_path",
    "commitment": "commitment",
}


@dataclass(frozen=True)
class Config:
    url: str = DEFAULT_URL
    keypair_path: str = DEFAULT_KEYPAIR_PATH
    commitment: str = "confirmed"
    timeout: float = 30.0
    confirm_timeout: float = 60.0
    poll_interval: float = 0.5
    send_attempts: int = 1
    skip_preflight: bool = False

    def with_overrides(self, **overrides) -> "Config":
        values = {k: v for k, v in overrides.items() if v is not None}
        if "url" in values:
            values["url"] = normalize_url(values["url"])
        config = replace(self, **values)
        config.validate()
        return config

    def validate(self):
        if self.commitment not in COMMITMENTS:
            raise ConfigError(f"Invalid commitment '{self.commitment}', expected one of {', '.join(COMMITMENTS)}")
        if self.send_attempts < 1:
            raise ConfigError("send_attempts must be at least 1")
        if self.timeout <= 0 or self.confirm_timeout <= 0 or self.poll_interval <= 0:
            raise ConfigError("timeouts and poll_interval must be positive")


def normalize_url(url: str) -> str:
    return URL_MONIKERS.get(url, url)


def load_config(path: Optional[str] = None, **overrides) -> Config:
    """Build a Config from a solana CLI style YAML file plus overrides.

    A missing file is only an error when the path was given explicitly.
    """
    explicit = path is not None
    config_path = Path(path if explicit else os.path.expanduser(str(DEFAULT_CONFIG_PATH))).expanduser()

    values = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")

        known = {f.name for f in fields(Config)}
        for key, value in raw.items():
            name = _CLI_KEYS.get(key, key)
            if name in known and value is not None:
                values[name] = value
    elif explicit:
        raise ConfigError(f"Config file {config_path} does not exist")

    if "url" in values:
        values["url"] = normalize_url(str(values["url"]))

    try:
        config = Config(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e
    config.validate()
    return config.with_overrides(**overrides)
