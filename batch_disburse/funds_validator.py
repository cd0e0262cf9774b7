"""
Funds Validator

Checks once, before anything is submitted, that the sending account holds
enough of every asset in the batch. The balance is not re-checked mid-batch.
"""

from decimal import Decimal
from typing import Dict

from loguru import logger

from .errors import ConnectivityError, DisburseError, InsufficientFunds


class FundsValidator:
    """Compare per-asset totals with on-chain balances"""

    def __init__(self, client):
        self.client = client

    async def validate(self, account, totals: Dict[str, Decimal]) -> Dict[str, Decimal]:
        """
        Validate balances for every asset in totals

        Args:
            account: SendingAccount (only its address is used)
            totals: asset_type -> required amount

        Returns:
            asset_type -> balance

        Raises:
            InsufficientFunds: on the first asset whose balance is short
            ConnectivityError: if a balance cannot be queried
        """
        balances = {}

        for asset_type, required in totals.items():
            try:
                balance = await self.client.get_balance(account.address, asset_type)
            except DisburseError:
                raise
            except Exception as e:
                raise ConnectivityError(f"Unable to query {asset_type} balance of {account.address}: {e}") from e

            logger.success(f"Account {account.address}'s balance is {balance} {asset_type}")

            if balance < required:
                raise InsufficientFunds(asset_type, balance, required)

            balances[asset_type] = balance

        return balances
