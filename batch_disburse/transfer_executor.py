"""
Transfer Executor

Performs exactly one transfer:
1. Build transaction and check projected fee against the ceiling
2. Sign with the sending account
3. Submit to the network
4. Wait for the receipt
5. Update the record with the outcome

Only one transaction is ever in flight: execute() returns or raises only after
the transfer is confirmed or has definitively failed.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from web3 import Web3

from .errors import FeeCeilingExceeded, TransferFailed
from .fee_guard import FeeGuard, FeeQuote
from .record_parser import TransferRecord, TransferStatus


@dataclass
class TransferReceipt:
    """Confirmation details of one transfer"""
    tx_reference: str
    block_number: Optional[int]
    gas_used: Optional[int]
    fee: FeeQuote


class TransferExecutor:
    """Sign, submit and confirm single transfers"""

    def __init__(self, client, fee_guard: FeeGuard):
        """
        Args:
            client: NetworkClient (or any object with the same coroutines)
            fee_guard: Fee ceiling guard
        """
        self.client = client
        self.fee_guard = fee_guard

    async def execute(self, account, record: TransferRecord) -> TransferReceipt:
        """
        Execute one transfer and update record in place

        Raises:
            FeeCeilingExceeded: projected fee above ceiling, nothing was signed
            TransferFailed: build, estimate, sign, submit or receipt failure
        """
        logger.info(f"Sending {record.amount} {record.asset_type} from {account.address} to {record.address}")

        # Step 1: build and price
        try:
            tx = self.client.build_transfer(account.address, record.address, record.amount, record.asset_type)
            gas = await self.client.estimate_fee(tx)
            gas_price = await self.client.get_unit_price()
        except Exception as e:
            raise self._fail(record, TransferFailed(f"Unable to prepare transfer to {record.name}", cause=e)) from e

        try:
            quote = self.fee_guard.check(gas, gas_price)
        except FeeCeilingExceeded as e:
            raise self._fail(record, e)

        # Step 2: sign
        try:
            tx['gas'] = gas
            tx['gasPrice'] = gas_price
            tx['nonce'] = await self.client.get_nonce(account.address)
            tx['chainId'] = await self.client.get_chain_id()
            raw_tx = account.sign_transaction(tx)
        except Exception as e:
            raise self._fail(record, TransferFailed(f"Unable to sign transfer to {record.name}", cause=e)) from e

        # Step 3 + 4: submit and wait for receipt
        record.status = TransferStatus.SUBMITTED

        def on_sent(tx_hex: str):
            # An interrupted receipt wait still leaves the hash on the record
            record.tx_reference = tx_hex

        try:
            receipt = await self.client.submit(raw_tx, on_sent=on_sent)
        except TransferFailed as e:
            raise self._fail(record, e)
        except Exception as e:
            raise self._fail(record, TransferFailed(f"Submission of transfer to {record.name} failed", cause=e)) from e

        tx_reference = Web3.to_hex(receipt['transactionHash'])

        if receipt.get('status') == 0:
            raise self._fail(record, TransferFailed(
                f"Transaction {tx_reference} to {record.name} reverted",
                tx_hash=tx_reference
            ))

        # Step 5: record outcome
        record.status = TransferStatus.CONFIRMED
        record.tx_reference = tx_reference
        logger.success(f"Send success. transactionHash: {tx_reference}")

        return TransferReceipt(
            tx_reference=tx_reference,
            block_number=receipt.get('blockNumber'),
            gas_used=receipt.get('gasUsed'),
            fee=quote,
        )

    @staticmethod
    def _fail(record: TransferRecord, error: Exception) -> Exception:
        record.status = TransferStatus.FAILED
        record.tx_reference = None
        record.error = str(error)
        logger.error(f"✗ Transfer to {record.name} ({record.address}) failed: {error}")
        return error
