# swapbot/filters/gas_check.py

from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3


@dataclass
class GasPriceCheck:
    ok: bool
    gas_price_gwei: Decimal
    max_gas_price_gwei: Decimal
    reason: str = ""


def gas_price_guard(gas_price_wei: int, max_gas_price_gwei: Decimal) -> GasPriceCheck:
    gas_price_gwei = Decimal(Web3.from_wei(gas_price_wei, "gwei"))

    if gas_price_gwei > max_gas_price_gwei:
        return GasPriceCheck(
            ok=False,
            gas_price_gwei=gas_price_gwei,
            max_gas_price_gwei=max_gas_price_gwei,
            reason=f"Gas price {gas_price_gwei:.4f} gwei > max {max_gas_price_gwei} gwei",
        )

    return GasPriceCheck(
        ok=True,
        gas_price_gwei=gas_price_gwei,
        max_gas_price_gwei=max_gas_price_gwei,
    )
