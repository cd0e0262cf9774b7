"""
Shared test doubles for the disbursement pipeline.

No test talks to a real node: FakeNetworkClient implements the coroutines the
pipeline uses and records every call.
"""
import asyncio
import os
import sys
from decimal import Decimal

import pytest
from loguru import logger
from web3 import Web3

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from batch_disburse.errors import AmountPrecisionExceeded, ConnectivityError, UnsupportedAsset  # noqa: E402
from batch_disburse.fee_guard import FeeGuard  # noqa: E402
from batch_disburse.network_client import NetworkClient, to_base_units  # noqa: E402
from batch_disburse.record_parser import TransferRecord  # noqa: E402


ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20
SENDER = "0x" + "f0" * 20

# EIP-55 reference address and the same address with one letter's case flipped
CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BAD_CHECKSUM = "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed"

GWEI = 10 ** 9
CHEAP_GAS = 21_000  # 0.000021 ETH at 1 gwei
EXPENSIVE_GAS = 2_000_000  # 0.002 ETH at 1 gwei
CEILING = Decimal("0.001")


class FakeNetworkClient:
    """In-memory stand-in for NetworkClient"""

    def __init__(self, balances=None, gas=CHEAP_GAS, gas_price=GWEI, block_height=1234, decimals=None):
        self.balances = balances if balances is not None else {'ETH': Decimal("100")}
        self.decimals = decimals or {}
        self.gas = gas
        self.gas_by_recipient = {}
        self.gas_price = gas_price
        self.block_height = block_height
        self.unreachable = False
        self.reject_recipients = set()
        self.revert_recipients = set()
        self.interrupt_recipients = set()
        self.submitted = []
        self.balance_queries = []
        self.closed = False

    async def get_block_height(self):
        if self.unreachable:
            raise ConnectivityError("Unable to connect to ETH node: connection refused")
        return self.block_height

    is_valid_address = staticmethod(NetworkClient.is_valid_address)

    def _resolve(self, asset_type):
        symbol = asset_type.upper()
        if symbol not in self.balances:
            raise UnsupportedAsset(asset_type)
        return symbol

    async def get_balance(self, address, asset_type):
        self.balance_queries.append((address, asset_type))
        return self.balances[self._resolve(asset_type)]

    def to_units(self, amount, asset_type, name=None):
        symbol = self._resolve(asset_type)
        decimals = self.decimals.get(symbol, 18)
        try:
            return to_base_units(amount, decimals)
        except ValueError:
            raise AmountPrecisionExceeded(amount, symbol, decimals, name) from None

    def build_transfer(self, sender, recipient, amount, asset_type):
        self.to_units(amount, asset_type)
        return {'from': sender, 'to': recipient, 'value': amount, 'asset': asset_type}

    async def estimate_fee(self, tx):
        return self.gas_by_recipient.get(tx['to'], self.gas)

    async def get_unit_price(self):
        return self.gas_price

    async def get_nonce(self, address):
        return len(self.submitted)

    async def get_chain_id(self):
        return 11155111

    async def submit(self, raw_tx, on_sent=None):
        self.submitted.append(raw_tx)
        recipient = raw_tx['to']
        if recipient in self.reject_recipients:
            raise ConnectionError("node rejected transaction")
        tx_hash = bytes([len(self.submitted)]) * 32
        if on_sent is not None:
            on_sent(Web3.to_hex(tx_hash))
        if recipient in self.interrupt_recipients:
            # Operator pressed Ctrl-C while waiting for the receipt
            raise asyncio.CancelledError()
        return {
            'transactionHash': tx_hash,
            'status': 0 if recipient in self.revert_recipients else 1,
            'blockNumber': self.block_height + len(self.submitted),
            'gasUsed': raw_tx['gas'],
        }

    @property
    def submitted_recipients(self):
        return [tx['to'] for tx in self.submitted]

    async def close(self):
        self.closed = True


class FakeAccount:
    """Signs by returning a copy of the transaction"""

    def __init__(self, address=SENDER):
        self.address = address
        self.signed = []

    def sign_transaction(self, tx):
        self.signed.append(dict(tx))
        return dict(tx)


class ScriptedPrompt:
    """Answers prompts from pre-set lists and remembers the questions"""

    def __init__(self, confirmations=None, texts=None):
        self.confirmations = list(confirmations or [])
        self.texts = list(texts or [])
        self.questions = []

    async def ask_confirmation(self, message, default=False):
        self.questions.append(message)
        return self.confirmations.pop(0)

    async def ask_text(self, message, default=None):
        self.questions.append(message)
        return self.texts.pop(0)


def make_record(name, address, amount, asset_type='ETH'):
    return TransferRecord(name=name, address=address, amount=Decimal(amount), asset_type=asset_type)


@pytest.fixture
def client():
    return FakeNetworkClient()


@pytest.fixture
def account():
    return FakeAccount()


@pytest.fixture
def fee_guard():
    return FeeGuard(CEILING)


@pytest.fixture
def three_records():
    return [
        make_record("Alice", ALICE, "1.5"),
        make_record("Bob", BOB, "2"),
        make_record("Carol", CAROL, "0.25"),
    ]


@pytest.fixture
def caplog_loguru():
    """Collect loguru messages emitted during a test"""
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record['message']), level="DEBUG")
    yield messages
    logger.remove(handler_id)
