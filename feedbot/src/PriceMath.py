"""Integer price conversion for concentrated-liquidity pools.

Pools report ``sqrtPriceX96 = sqrt(token1/token0) * 2**96``. Feeds store
the price as an integer with 6 decimals, computed exactly the way the
destination contracts do it so off-chain previews match on-chain values.

.. code-block:: python

    >>> sqrt_price_x96_to_price(2**96, 18, 18)
    1000000
    >>> sqrt_price_x96_to_price(2**96 * 2, 18, 18)
    4000000
    >>> sqrt_price_x96_to_price(2**96 * 2, 18, 18, invert=True)
    250000
"""

from __future__ import annotations

from .errors import PriceConversionError

Q64 = 2**64
Q96 = 2**96
Q128 = 2**128
Q192 = 2**192
UINT256_MAX = 2**256 - 1

# Number of decimals of every feed value.
OUTPUT_DECIMALS = 6
# Reciprocal scale: 1e6 * 1e6.
INVERSION_SCALE = 10**12


def sqrt_price_x96_to_price(
    sqrt_price_x96: int,
    token0_decimals: int,
    token1_decimals: int,
    invert: bool = False,
) -> int:
    """Convert a Q64.96 square-root price to a 6-decimal integer price.

    Inputs above 2**128 are pre-divided by 2**64 before squaring so the
    square stays within uint256, matching the contracts.

    :param sqrt_price_x96: Square-root price at 2**96 scale.
    :param token0_decimals: Decimals of token0.
    :param token1_decimals: Decimals of token1.
    :param invert: Return token0 per token1 instead.
    :returns: Price scaled by 10**6.
    :raises PriceConversionError: If the input or result is out of range.
    """
    if sqrt_price_x96 <= 0:
        raise PriceConversionError(f"Non-positive sqrtPriceX96: {sqrt_price_x96}")

    if sqrt_price_x96 > Q128:
        reduced = sqrt_price_x96 // Q64
        squared = reduced * reduced
        denominator = Q64
    else:
        squared = sqrt_price_x96 * sqrt_price_x96
        denominator = Q192

    decimal_diff = token0_decimals - token1_decimals
    if decimal_diff >= 0:
        numerator = squared * 10 ** (OUTPUT_DECIMALS + decimal_diff)
    else:
        numerator = squared * 10**OUTPUT_DECIMALS // 10 ** (-decimal_diff)

    if numerator > UINT256_MAX:
        raise PriceConversionError(
            f"Price overflow for sqrtPriceX96={sqrt_price_x96} "
            f"(decimals {token0_decimals}/{token1_decimals})"
        )

    price = numerator // denominator
    if price <= 0:
        raise PriceConversionError(
            f"Price rounds to zero for sqrtPriceX96={sqrt_price_x96} "
            f"(decimals {token0_decimals}/{token1_decimals})"
        )

    if invert:
        price = INVERSION_SCALE // price
        if price <= 0:
            raise PriceConversionError(
                f"Inverted price rounds to zero for sqrtPriceX96={sqrt_price_x96}"
            )

    return price


def format_price(value: int, decimals: int = OUTPUT_DECIMALS) -> str:
    """Render a scaled integer price for logs.

    :param value: Scaled integer price.
    :param decimals: Number of decimals in ``value``.
    :returns: Decimal string such as "1.000000".
    """
    whole, frac = divmod(value, 10**decimals)
    return f"{whole}.{frac:0{decimals}d}"


def deviation_bps(previous_sqrt_price_x96: int, new_sqrt_price_x96: int) -> int:
    """Deviation between two sqrt prices measured on the actual price.

    The 2**192 scale cancels, so the squares are compared directly.

    :param previous_sqrt_price_x96: Previously accepted sqrt price.
    :param new_sqrt_price_x96: Candidate sqrt price.
    :returns: Absolute change in basis points.
    """
    if previous_sqrt_price_x96 <= 0:
        raise PriceConversionError("Previous price must be positive")
    old = previous_sqrt_price_x96 * previous_sqrt_price_x96
    new = new_sqrt_price_x96 * new_sqrt_price_x96
    return abs(new - old) * 10_000 // old
