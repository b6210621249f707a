# swapbot/filters/__init__.py
"""Pre-trade guards returning result dataclasses instead of raising"""

from swapbot.filters.gas_check import GasPriceCheck, gas_price_guard
from swapbot.filters.output_check import OutputCheck, min_output_guard

__all__ = ["GasPriceCheck", "gas_price_guard", "OutputCheck", "min_output_guard"]
