"""
Batch Disburse Errors

Exception hierarchy for the disbursement pipeline.

Groups:
- RecordError: parse-time, aborts parsing of the list file
- BatchError: batch-time, aborts the remaining execution of a session
- ConnectivityError / ConfigurationError: startup-time, fatal to the process
- PersistenceError: flush-time, the in-memory ledger is kept
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class DisburseError(Exception):
    """Base exception for all batch disbursement errors."""

    kind = "DisburseError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Parse-time
# ============================================================================

class RecordError(DisburseError):
    """Raised when the list file cannot be turned into transfer records."""

    kind = "RecordError"

    def __init__(self, message: str, line_number: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        if line_number is not None:
            message = f"Line {line_number}: {message}"
        super().__init__(message, details)
        self.line_number = line_number


class InputFileError(RecordError):
    """Raised when the list file cannot be opened or decoded."""

    kind = "InputFileError"


class MalformedRecord(RecordError):
    kind = "MalformedRecord"


class InvalidAddress(RecordError):
    kind = "InvalidAddress"

    def __init__(self, address: str, line_number: Optional[int] = None):
        super().__init__(f"Invalid ETH Address {address}", line_number, {'address': address})
        self.address = address


class InvalidAmount(RecordError):
    kind = "InvalidAmount"

    def __init__(self, amount: str, reason: str, line_number: Optional[int] = None):
        super().__init__(f"Invalid amount {amount!r}: {reason}", line_number, {'amount': amount})
        self.amount = amount


# ============================================================================
# Batch-time
# ============================================================================

class BatchError(DisburseError):
    """Raised when a session has to stop executing transfers."""

    kind = "BatchError"


class EmptyBatch(BatchError):
    kind = "EmptyBatch"

    def __init__(self):
        super().__init__("Transfer list contains no records")


class UserCancelled(BatchError):
    kind = "UserCancelled"

    def __init__(self, message: str = "Batch Transfer terminated by operator"):
        super().__init__(message)


class UnsupportedAsset(BatchError):
    """Raised when an asset type has no entry in the configured asset table."""

    kind = "UnsupportedAsset"

    def __init__(self, asset_type: str):
        super().__init__(f"Asset type {asset_type!r} is not configured", {'asset_type': asset_type})
        self.asset_type = asset_type


class AmountPrecisionExceeded(BatchError):
    """Raised when an amount has more decimal places than its asset supports."""

    kind = "AmountPrecisionExceeded"

    def __init__(self, amount: Decimal, asset_type: str, decimals: int, name: Optional[str] = None):
        recipient = f" for {name}" if name else ""
        super().__init__(
            f"Amount {amount} {asset_type}{recipient} has more than {decimals} decimal places",
            {'name': name, 'amount': str(amount), 'asset_type': asset_type, 'decimals': decimals}
        )
        self.amount = amount
        self.asset_type = asset_type
        self.decimals = decimals


class InsufficientFunds(BatchError):
    kind = "InsufficientFunds"

    def __init__(self, asset_type: str, balance: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient balance {balance} {asset_type}; less than {required}",
            {'asset_type': asset_type, 'balance': str(balance), 'required': str(required)}
        )
        self.asset_type = asset_type
        self.balance = balance
        self.required = required


class FeeCeilingExceeded(BatchError):
    kind = "FeeCeilingExceeded"

    def __init__(self, cost: Decimal, ceiling: Decimal):
        super().__init__(
            f"Gas cost {cost} is higher than {ceiling}. "
            f"Either increase fees.max_gas_cost in the config or wait for a quiet time to run again.",
            {'cost': str(cost), 'ceiling': str(ceiling)}
        )
        self.cost = cost
        self.ceiling = ceiling


class TransferFailed(BatchError):
    kind = "TransferFailed"

    def __init__(self, message: str, cause: Optional[BaseException] = None, tx_hash: Optional[str] = None):
        if cause is not None:
            message = f"{message}: {cause}"
        details = {'tx_hash': tx_hash} if tx_hash else {}
        super().__init__(message, details)
        self.cause = cause
        self.tx_hash = tx_hash


# ============================================================================
# Startup / flush
# ============================================================================

class ConnectivityError(DisburseError):
    """Raised when the blockchain node cannot be reached."""

    kind = "ConnectivityError"


class ConfigurationError(DisburseError):
    """Raised when configuration is invalid."""

    kind = "ConfigurationError"


class PersistenceError(DisburseError):
    """Raised when the session ledger cannot be written."""

    kind = "PersistenceError"

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"Unable to write session log {path}: {cause}", {'path': path})
        self.path = path
        self.cause = cause
