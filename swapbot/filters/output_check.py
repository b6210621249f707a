# swapbot/filters/output_check.py

from dataclasses import dataclass

from swapbot.tokens import TokenDescriptor, naive_output


@dataclass
class OutputCheck:
    ok: bool
    expected: int
    minimum: int
    buy_amount: int
    ratio_bps: int
    reason: str = ""


def min_output_guard(
    *,
    sell_amount: int,
    buy_amount: int,
    sell: TokenDescriptor,
    buy: TokenDescriptor,
    min_output_bps: int,
) -> OutputCheck:
    """
    expected = 1:1 estimate of the buy amount (decimals-adjusted)
    minimum  = expected * min_output_bps / 10000
    """

    expected = naive_output(sell_amount, sell, buy)
    minimum = expected * min_output_bps // 10_000
    ratio_bps = buy_amount * 10_000 // expected if expected > 0 else 0

    if buy_amount <= 0:
        return OutputCheck(
            ok=False,
            expected=expected,
            minimum=minimum,
            buy_amount=buy_amount,
            ratio_bps=ratio_bps,
            reason="Zero or invalid buy amount",
        )

    if buy_amount < minimum:
        return OutputCheck(
            ok=False,
            expected=expected,
            minimum=minimum,
            buy_amount=buy_amount,
            ratio_bps=ratio_bps,
            reason=f"Output {buy.format(buy_amount)} < minimum {buy.format(minimum)} ({min_output_bps / 100:.2f}% of 1:1)",
        )

    return OutputCheck(
        ok=True,
        expected=expected,
        minimum=minimum,
        buy_amount=buy_amount,
        ratio_bps=ratio_bps,
    )
