"""
Disburse Config

Loads disburse_config.yaml and environment overrides (.env is read through
python-dotenv). Credentials only ever come from the environment.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .errors import ConfigurationError


DEFAULT_CONFIG_PATH = "disburse_config.yaml"


@dataclass
class AssetConfig:
    """How one asset label maps onto the chain"""
    symbol: str
    native: bool = True
    contract: Optional[str] = None
    decimals: int = 18


@dataclass
class Credentials:
    """Signing credentials, never logged"""
    private_key: Optional[str] = None
    keystore_path: Optional[str] = None
    keystore_password: Optional[str] = None

    def __repr__(self):
        source = 'private_key' if self.private_key else ('keystore' if self.keystore_path else 'none')
        return f"Credentials(source={source})"

    @property
    def is_empty(self) -> bool:
        return not self.private_key and not self.keystore_path


def _default_assets() -> Dict[str, AssetConfig]:
    return {'ETH': AssetConfig(symbol='ETH', native=True, decimals=18)}


@dataclass
class DisburseConfig:
    """Runtime configuration for a disbursement process"""
    rpc_endpoint: str = "http://127.0.0.1:8545"
    poa: bool = False
    request_timeout_seconds: int = 60
    receipt_timeout_seconds: Optional[float] = None
    receipt_poll_seconds: float = 2.0
    default_input_path: str = "list.tsv"
    output_folder: str = "logs"
    max_gas_cost: Decimal = Decimal("0.005")
    assets: Dict[str, AssetConfig] = field(default_factory=_default_assets)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    credentials: Credentials = field(default_factory=Credentials)

    VALID_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")

    @classmethod
    def load(cls, config_path: str = DEFAULT_CONFIG_PATH, env: Optional[Dict[str, str]] = None) -> 'DisburseConfig':
        """
        Load configuration from YAML, then apply environment overrides

        Args:
            config_path: Path to YAML config
            env: Environment mapping (defaults to os.environ after loading .env)

        Returns:
            DisburseConfig

        Raises:
            ConfigurationError: if a value is present but invalid
        """
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        raw = cls._read_yaml(Path(config_path))
        try:
            config = cls.from_dict(raw)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid value in {config_path}: {e}") from e
        config._apply_env(env)
        config.validate()
        return config

    @staticmethod
    def _read_yaml(config_file: Path) -> Dict[str, Any]:
        if not config_file.exists():
            logger.warning(f"Config file {config_file} not found, using defaults")
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a mapping")

        logger.info(f"Loaded config from {config_file}")
        return data

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'DisburseConfig':
        network = raw.get('network') or {}
        paths = raw.get('paths') or {}
        fees = raw.get('fees') or {}
        logging_cfg = raw.get('logging') or {}

        config = cls()
        config.rpc_endpoint = network.get('rpc_endpoint', config.rpc_endpoint)
        config.poa = bool(network.get('poa', config.poa))
        config.request_timeout_seconds = int(network.get('request_timeout_seconds', config.request_timeout_seconds))
        config.receipt_timeout_seconds = network.get('receipt_timeout_seconds', config.receipt_timeout_seconds)
        config.receipt_poll_seconds = float(network.get('receipt_poll_seconds', config.receipt_poll_seconds))
        config.default_input_path = paths.get('default_input_path', config.default_input_path)
        config.output_folder = paths.get('output_folder', config.output_folder)

        if 'max_gas_cost' in fees:
            config.max_gas_cost = _to_decimal(fees['max_gas_cost'], 'fees.max_gas_cost')

        if raw.get('assets'):
            config.assets = _parse_assets(raw['assets'])

        config.log_level = str(logging_cfg.get('level', config.log_level)).upper()
        config.log_file = logging_cfg.get('file', config.log_file)
        return config

    def _apply_env(self, env: Dict[str, str]):
        if env.get('DISBURSE_RPC_URL'):
            self.rpc_endpoint = env['DISBURSE_RPC_URL']
        if env.get('DISBURSE_INPUT_PATH'):
            self.default_input_path = env['DISBURSE_INPUT_PATH']
        if env.get('DISBURSE_OUTPUT_FOLDER'):
            self.output_folder = env['DISBURSE_OUTPUT_FOLDER']
        if env.get('DISBURSE_MAX_GAS_COST'):
            self.max_gas_cost = _to_decimal(env['DISBURSE_MAX_GAS_COST'], 'DISBURSE_MAX_GAS_COST')
        if env.get('LOG_LEVEL'):
            self.log_level = env['LOG_LEVEL'].upper()

        self.credentials = Credentials(
            private_key=env.get('DISBURSE_PRIVATE_KEY') or None,
            keystore_path=env.get('DISBURSE_KEYSTORE_PATH') or None,
            keystore_password=env.get('DISBURSE_KEYSTORE_PASSWORD') or None,
        )

    def validate(self):
        """Validate value ranges"""
        if self.max_gas_cost <= 0:
            raise ConfigurationError(f"fees.max_gas_cost must be positive, got {self.max_gas_cost}")

        if self.log_level not in self.VALID_LOG_LEVELS:
            raise ConfigurationError(f"Log level must be one of: {list(self.VALID_LOG_LEVELS)}")

        if self.receipt_timeout_seconds is not None:
            try:
                self.receipt_timeout_seconds = float(self.receipt_timeout_seconds)
            except (TypeError, ValueError) as e:
                raise ConfigurationError("network.receipt_timeout_seconds must be a number or null") from e
            if self.receipt_timeout_seconds <= 0:
                raise ConfigurationError("network.receipt_timeout_seconds must be positive")

        if self.receipt_poll_seconds <= 0:
            raise ConfigurationError("network.receipt_poll_seconds must be positive")

        if self.credentials.keystore_path and not self.credentials.keystore_password:
            raise ConfigurationError("DISBURSE_KEYSTORE_PASSWORD is required with DISBURSE_KEYSTORE_PATH")

    def ensure_directories(self):
        """Ensure the session log folder exists"""
        Path(self.output_folder).mkdir(parents=True, exist_ok=True)


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        # str() first so YAML floats keep their written digits
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"{name} must be a decimal number, got {value!r}") from e
    if not result.is_finite():
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return result


def _parse_assets(raw_assets: Dict[str, Any]) -> Dict[str, AssetConfig]:
    if not isinstance(raw_assets, dict):
        raise ConfigurationError("assets must be a mapping of label -> settings")

    assets = {}
    for label, settings in raw_assets.items():
        symbol = str(label).upper()
        settings = settings or {}
        contract = settings.get('contract')
        native = bool(settings.get('native', contract is None))

        if not native and not contract:
            raise ConfigurationError(f"Token asset {symbol} needs a contract address")
        if native and contract:
            raise ConfigurationError(f"Asset {symbol} cannot be both native and a token contract")

        try:
            decimals = int(settings.get('decimals', 18))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"assets.{symbol}.decimals must be an integer") from e
        if decimals < 0:
            raise ConfigurationError(f"assets.{symbol}.decimals must not be negative")

        assets[symbol] = AssetConfig(symbol=symbol, native=native, contract=contract, decimals=decimals)

    return assets
