"""
Network Client

Thin async wrapper over web3 for everything the disbursement pipeline needs
from an EVM node:
- connectivity check (block height)
- address format predicate
- native and ERC-20 balances
- transfer transaction building, gas estimation, gas price, nonce, chain id
- raw transaction submission collapsed with the receipt wait

SendingAccount holds the signing key. It is the only object that ever sees it.
"""

import json
from decimal import Decimal, localcontext
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from .config import AssetConfig, Credentials, DisburseConfig
from .errors import AmountPrecisionExceeded, ConfigurationError, ConnectivityError, TransferFailed, UnsupportedAsset


# Precision large enough for any uint256 amount
EXACT_PRECISION = 100

ERC20_ABI = [
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "type": "function"},
    {"constant": True, "inputs": [{"name": "", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}], "type": "function"},
    {"constant": False, "inputs": [{"name": "_to", "type": "address"}, {"name": "_value", "type": "uint256"}], "name": "transfer", "outputs": [{"name": "", "type": "bool"}], "type": "function"},
]


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, refusing to truncate"""
    with localcontext() as ctx:
        ctx.prec = EXACT_PRECISION
        units = amount.scaleb(decimals)
        if units != units.to_integral_value():
            raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
        return int(units)


def from_base_units(units: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = EXACT_PRECISION
        return Decimal(units).scaleb(-decimals)


class SendingAccount:
    """
    The sending identity: an address plus exclusive signing capability

    The private key stays inside the wrapped eth_account LocalAccount and is
    never part of repr() or any serialized output.
    """

    def __init__(self, local_account):
        self._account = local_account
        self.address: str = local_account.address

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> 'SendingAccount':
        """
        Build the account from a raw private key or an encrypted keystore

        Raises:
            ConfigurationError: if no usable credentials are present
        """
        if credentials.private_key:
            try:
                local_account = Account.from_key(credentials.private_key)
            except (ValueError, TypeError):
                # Never chain: the original message may echo key material
                raise ConfigurationError("DISBURSE_PRIVATE_KEY is not a valid private key") from None

        elif credentials.keystore_path:
            keystore_file = Path(credentials.keystore_path)
            try:
                with open(keystore_file, 'r', encoding='utf-8') as f:
                    keyfile_json = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Unable to read keystore {keystore_file}: {e}") from e

            try:
                private_key = Account.decrypt(keyfile_json, credentials.keystore_password)
            except ValueError:
                raise ConfigurationError(f"Unable to decrypt keystore {keystore_file}: wrong password?") from None
            local_account = Account.from_key(private_key)

        else:
            raise ConfigurationError(
                "No signing credentials: set DISBURSE_PRIVATE_KEY or DISBURSE_KEYSTORE_PATH"
            )

        logger.info(f"Loaded sending account {local_account.address}")
        return cls(local_account)

    def sign_transaction(self, tx: Dict[str, Any]) -> bytes:
        """Sign a fully populated transaction and return the raw bytes"""
        signed = self._account.sign_transaction(tx)
        return signed.raw_transaction

    def __repr__(self):
        return f"SendingAccount({self.address})"


class NetworkClient:
    """
    Async EVM node client

    Features:
    - Native coin and ERC-20 token assets from the configured asset table
    - Legacy gasPrice transactions so projected cost = gas * gasPrice
    - submit() resolves exactly once with a receipt or raises
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        assets: Dict[str, AssetConfig],
        receipt_timeout_seconds: Optional[float] = None,
        receipt_poll_seconds: float = 2.0
    ):
        """
        Initialize network client

        Args:
            w3: AsyncWeb3 instance
            assets: Asset label -> AssetConfig
            receipt_timeout_seconds: Receipt wait limit, None waits forever
            receipt_poll_seconds: Receipt poll latency
        """
        self.w3 = w3
        self.assets = {label.upper(): asset for label, asset in assets.items()}
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.receipt_poll_seconds = receipt_poll_seconds
        self._chain_id: Optional[int] = None

    @classmethod
    def from_config(cls, config: DisburseConfig) -> 'NetworkClient':
        provider = AsyncHTTPProvider(
            config.rpc_endpoint,
            request_kwargs={'timeout': config.request_timeout_seconds}
        )
        w3 = AsyncWeb3(provider)
        if config.poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        logger.info(f"Network client configured for {config.rpc_endpoint}")
        return cls(
            w3,
            config.assets,
            receipt_timeout_seconds=config.receipt_timeout_seconds,
            receipt_poll_seconds=config.receipt_poll_seconds
        )

    async def get_block_height(self) -> int:
        """
        Current block number, doubles as the connectivity check

        Raises:
            ConnectivityError: if the node cannot be reached
        """
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise ConnectivityError(f"Unable to connect to ETH node: {e}") from e

    @staticmethod
    def is_valid_address(value: str) -> bool:
        """Hex address of the right length; mixed case must carry a valid EIP-55 checksum"""
        if not isinstance(value, str) or not Web3.is_address(value):
            return False
        hex_digits = value[2:] if value[:2].lower() == '0x' else value
        if hex_digits.lower() != hex_digits and hex_digits.upper() != hex_digits:
            return Web3.is_checksum_address(value)
        return True

    def resolve_asset(self, asset_type: str) -> AssetConfig:
        asset = self.assets.get(asset_type.upper())
        if asset is None:
            raise UnsupportedAsset(asset_type)
        return asset

    def _token_contract(self, asset: AssetConfig):
        return self.w3.eth.contract(address=Web3.to_checksum_address(asset.contract), abi=ERC20_ABI)

    async def get_balance(self, address: str, asset_type: str) -> Decimal:
        """Balance of address in human units of asset_type"""
        asset = self.resolve_asset(asset_type)
        owner = Web3.to_checksum_address(address)

        if asset.native:
            units = await self.w3.eth.get_balance(owner)
        else:
            units = await self._token_contract(asset).functions.balanceOf(owner).call()

        return from_base_units(units, asset.decimals)

    def to_units(self, amount: Decimal, asset_type: str, name: Optional[str] = None) -> int:
        """
        Convert amount of asset_type to integer base units

        Raises:
            UnsupportedAsset: if asset_type is not configured
            AmountPrecisionExceeded: if amount has more decimals than the asset
        """
        asset = self.resolve_asset(asset_type)
        try:
            return to_base_units(amount, asset.decimals)
        except ValueError:
            raise AmountPrecisionExceeded(amount, asset.symbol, asset.decimals, name) from None

    def build_transfer(self, sender: str, recipient: str, amount: Decimal, asset_type: str) -> Dict[str, Any]:
        """
        Build an unsigned transfer without gas, price, nonce or chain id

        Native assets move value directly. Token assets call transfer() on
        the configured contract with zero value.
        """
        asset = self.resolve_asset(asset_type)
        units = self.to_units(amount, asset_type)
        to_address = Web3.to_checksum_address(recipient)

        if asset.native:
            return {
                'from': sender,
                'to': to_address,
                'value': units,
            }

        contract = self._token_contract(asset)
        return {
            'from': sender,
            'to': contract.address,
            'value': 0,
            'data': contract.encode_abi('transfer', args=[to_address, units]),
        }

    async def estimate_fee(self, tx: Dict[str, Any]) -> int:
        """Estimated gas units for tx"""
        return await self.w3.eth.estimate_gas(tx)

    async def get_unit_price(self) -> int:
        """Current gas price in wei"""
        return await self.w3.eth.gas_price

    async def get_nonce(self, address: str) -> int:
        return await self.w3.eth.get_transaction_count(address, 'pending')

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.w3.eth.chain_id
        return self._chain_id

    async def submit(self, raw_tx: bytes, on_sent: Optional[Callable[[str], None]] = None):
        """
        Send a signed transaction and wait for its receipt

        Args:
            raw_tx: Signed transaction bytes
            on_sent: Called with the transaction hash once the node accepts it

        Returns:
            Transaction receipt

        Raises:
            TransferFailed: if the receipt wait times out
        """
        tx_hash = await self.w3.eth.send_raw_transaction(raw_tx)
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"Submitted {tx_hex}, waiting for receipt ...")
        if on_sent is not None:
            on_sent(tx_hex)

        try:
            return await self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout_seconds,
                poll_latency=self.receipt_poll_seconds
            )
        except TimeExhausted as e:
            raise TransferFailed(
                f"No receipt for {tx_hex} after {self.receipt_timeout_seconds}s (it may still be mined)",
                cause=e,
                tx_hash=tx_hex
            ) from e

    async def close(self):
        """Close provider sessions"""
        try:
            await self.w3.provider.disconnect()
            logger.debug("✓ Network provider closed")
        except Exception as e:
            logger.debug(f"Error closing network provider: {e}")
