"""Pipeline configuration loaded from config/aggregator.yaml and the environment"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from src.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "aggregator.yaml"

DEFAULT_NETWORKS = ("ETH", "APTOS", "SOL", "SUI")
# Move-based chains use case-significant type addresses
DEFAULT_CASE_SENSITIVE_NETWORKS = ("SUI", "APTOS")


@dataclass(frozen=True)
class AggregatorSettings:
    """Upstream aggregator endpoint and pacing settings"""
    base_url: str = "https://web3.okx.com"
    timeout: float = 10.0
    page_size: int = 10
    request_interval: float = 1.0
    network_interval: float = 1.0
    token_list_retries: int = 3
    retry_delay: float = 1.0
    networks: Tuple[str, ...] = DEFAULT_NETWORKS
    case_sensitive_networks: Tuple[str, ...] = DEFAULT_CASE_SENSITIVE_NETWORKS
    invest_type: str = "101"
    sort_property: str = "RATE"
    sort_direction: str = "DESC"


@dataclass(frozen=True)
class StorageSettings:
    """Where snapshots are written"""
    data_dir: Path = PROJECT_ROOT / "data"


@dataclass(frozen=True)
class Credentials:
    """Secrets read from the process environment"""
    api_key: str = ""
    secret_key: str = ""
    passphrase: str = ""
    cron_secret: str = ""
    ideas_api_key: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "Credentials":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("OKX_API_KEY", ""),
            secret_key=env.get("OKX_SECRET_KEY", ""),
            passphrase=env.get("OKX_PASSPHRASE", ""),
            cron_secret=env.get("CRON_SECRET", ""),
            ideas_api_key=env.get("IDEAS_API_KEY", ""),
        )

    def require(self):
        """Raise ConfigurationError unless all OKX credentials are present"""
        missing = [
            name for name, value in (
                ("OKX_API_KEY", self.api_key),
                ("OKX_SECRET_KEY", self.secret_key),
                ("OKX_PASSPHRASE", self.passphrase),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required OKX API credentials: {', '.join(missing)}"
            )


@dataclass(frozen=True)
class Settings:
    aggregator: AggregatorSettings = field(default_factory=AggregatorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    credentials: Credentials = field(default_factory=Credentials)


def _aggregator_from_dict(raw: Dict) -> AggregatorSettings:
    defaults = AggregatorSettings()
    return AggregatorSettings(
        base_url=str(raw.get("base_url", defaults.base_url)).rstrip("/"),
        timeout=float(raw.get("timeout", defaults.timeout)),
        page_size=int(raw.get("page_size", defaults.page_size)),
        request_interval=float(raw.get("request_interval", defaults.request_interval)),
        network_interval=float(raw.get("network_interval", defaults.network_interval)),
        token_list_retries=int(raw.get("token_list_retries", defaults.token_list_retries)),
        retry_delay=float(raw.get("retry_delay", defaults.retry_delay)),
        networks=tuple(raw.get("networks") or defaults.networks),
        case_sensitive_networks=tuple(
            raw.get("case_sensitive_networks") or defaults.case_sensitive_networks
        ),
        invest_type=str(raw.get("invest_type", defaults.invest_type)),
        sort_property=raw.get("sort_property", defaults.sort_property),
        sort_direction=raw.get("sort_direction", defaults.sort_direction),
    )


def _storage_from_dict(raw: Dict) -> StorageSettings:
    data_dir = Path(raw.get("data_dir", StorageSettings().data_dir))
    if not data_dir.is_absolute():
        data_dir = PROJECT_ROOT / data_dir
    return StorageSettings(data_dir=data_dir)


def load_settings(config_path: Optional[str] = None,
                  environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Load settings from YAML and the environment.

    Args:
        config_path: Path to the aggregator YAML file (defaults to config/aggregator.yaml)
        environ: Mapping used instead of os.environ (tests)

    Returns:
        Settings with defaults filled in for any missing key
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Aggregator config not found: {path}")

    with open(path, 'r') as f:
        config = yaml.safe_load(f) or {}

    return Settings(
        aggregator=_aggregator_from_dict(config.get('aggregator') or {}),
        storage=_storage_from_dict(config.get('storage') or {}),
        credentials=Credentials.from_env(environ),
    )
