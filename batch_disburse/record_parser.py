"""
Record Parser

Turns the operator's tab-delimited list file into validated TransferRecords.

Format (one record per line):
    name <TAB> address <TAB> amount <TAB> asset_type

Lines whose first field starts with '#' are comments. Blank lines are skipped.
Parsing is all-or-nothing: the first bad line aborts with no records returned.
"""

import csv
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .errors import InputFileError, InvalidAddress, InvalidAmount, MalformedRecord


EXPECTED_FIELDS = 4

# Plain decimal notation; Decimal() alone would also accept "1_5", "NaN" and "Infinity"
AMOUNT_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


class TransferStatus(str, Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'


@dataclass
class TransferRecord:
    """One requested disbursement"""
    name: str
    address: str  # lowercase
    amount: Decimal
    asset_type: str  # upper-case label
    status: TransferStatus = TransferStatus.PENDING
    tx_reference: Optional[str] = None
    error: Optional[str] = None
    line_number: Optional[int] = field(default=None, compare=False)

    def to_dict(self) -> Dict:
        """Serializable snapshot; optional fields only when set"""
        data = {
            'name': self.name,
            'address': self.address,
            'amount': str(self.amount),
            'asset_type': self.asset_type,
            'status': self.status.value,
        }
        if self.tx_reference:
            data['tx_reference'] = self.tx_reference
        if self.error:
            data['error'] = self.error
        return data


class RecordParser:
    """
    Parse and validate transfer list lines

    The address predicate is injected so parsing stays free of network access.
    """

    def __init__(self, is_valid_address: Callable[[str], bool], delimiter: str = '\t'):
        self.is_valid_address = is_valid_address
        self.delimiter = delimiter

    def parse_file(self, filepath: str) -> List[TransferRecord]:
        """
        Open a list file and parse it

        Raises:
            InputFileError: if the file cannot be read
            RecordError: on the first invalid line
        """
        path = Path(filepath).expanduser()
        logger.info(f"Opening file from path {path}")

        try:
            # utf-8-sig tolerates a BOM from spreadsheet exports
            with open(path, 'r', encoding='utf-8-sig', newline='') as f:
                logger.info("Parsing list file ...")
                records = self.parse_lines(f)
        except OSError as e:
            raise InputFileError(f"Unable to open list file {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise InputFileError(f"List file {path} is not valid UTF-8: {e}") from e

        logger.info(f"Parsed {len(records)} records from {path}")
        return records

    def parse_lines(self, lines: Iterable[str]) -> List[TransferRecord]:
        """Parse an iterable of raw lines into records, in order"""
        records = []
        reader = csv.reader(lines, delimiter=self.delimiter, quoting=csv.QUOTE_NONE)

        for row in reader:
            line_number = reader.line_num
            fields = [value.strip() for value in row]

            if not fields or all(not value for value in fields):
                continue

            if fields[0].startswith('#'):
                continue

            records.append(self._parse_fields(fields, line_number))

        return records

    def _parse_fields(self, fields: List[str], line_number: int) -> TransferRecord:
        count = len(fields)
        if count != EXPECTED_FIELDS:
            raise MalformedRecord(
                f"Invalid count of columns. Expected {EXPECTED_FIELDS}; Actual {count}",
                line_number,
                {'field_count': count}
            )

        name, raw_address, raw_amount, asset_type = fields

        if not name:
            raise MalformedRecord("Name must not be empty", line_number)
        if not asset_type:
            raise MalformedRecord("Asset type must not be empty", line_number)

        # Check before lowercasing so a broken EIP-55 checksum is caught
        if not self.is_valid_address(raw_address):
            raise InvalidAddress(raw_address, line_number)

        return TransferRecord(
            name=name,
            address=raw_address.lower(),
            amount=self._parse_amount(raw_amount, line_number),
            asset_type=asset_type.upper(),
            line_number=line_number,
        )

    @staticmethod
    def _parse_amount(raw_amount: str, line_number: int) -> Decimal:
        if not AMOUNT_PATTERN.fullmatch(raw_amount):
            raise InvalidAmount(raw_amount, "not a decimal number", line_number)

        try:
            amount = Decimal(raw_amount)
        except InvalidOperation:
            raise InvalidAmount(raw_amount, "not a decimal number", line_number) from None

        if amount <= 0:
            raise InvalidAmount(raw_amount, "must be greater than zero", line_number)

        return amount
