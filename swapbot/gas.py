# swapbot/gas.py
"""
Gas cost in USD for quote scoring
"""

from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3


@dataclass(frozen=True)
class GasCost:
    """Gas cost breakdown"""
    gas_units: int
    gas_price_gwei: Decimal
    gas_cost_native: Decimal
    gas_cost_usd: Decimal
    native_price_usd: Decimal


def estimate_gas_cost(
    *,
    gas_units: int,
    gas_price_wei: int,
    native_price_usd: Decimal,
) -> GasCost:

    gas_cost_native = Decimal(gas_units) * Decimal(gas_price_wei) / Decimal(10 ** 18)
    return GasCost(
        gas_units=gas_units,
        gas_price_gwei=Decimal(Web3.from_wei(gas_price_wei, "gwei")),
        gas_cost_native=gas_cost_native,
        gas_cost_usd=gas_cost_native * native_price_usd,
        native_price_usd=native_price_usd,
    )
