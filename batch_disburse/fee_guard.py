"""
Fee Guard

Projects the network fee of a transfer in the native coin and rejects it when
it is above the configured ceiling.
"""

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger

from .errors import FeeCeilingExceeded
from .network_client import from_base_units


NATIVE_DECIMALS = 18


@dataclass
class FeeQuote:
    """Projected fee of one transfer"""
    gas: int
    gas_price: int  # wei per gas unit
    cost: Decimal  # native coin

    def __repr__(self):
        return f"FeeQuote({self.gas} gas @ {self.gas_price} wei = {self.cost})"


class FeeGuard:
    """Hard cap on the projected cost of a single transfer"""

    def __init__(self, ceiling: Decimal):
        """
        Args:
            ceiling: Maximum acceptable fee per transfer, in native coin
        """
        self.ceiling = ceiling

    @staticmethod
    def project(gas: int, gas_price: int) -> Decimal:
        return from_base_units(gas * gas_price, NATIVE_DECIMALS)

    def check(self, gas: int, gas_price: int) -> FeeQuote:
        """
        Project the cost and compare with the ceiling

        Raises:
            FeeCeilingExceeded: if the projected cost is above the ceiling
        """
        cost = self.project(gas, gas_price)
        logger.warning(f"Gas Cost: {cost} (ceiling {self.ceiling})")

        if cost > self.ceiling:
            raise FeeCeilingExceeded(cost, self.ceiling)

        return FeeQuote(gas=gas, gas_price=gas_price, cost=cost)
