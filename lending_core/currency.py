"""
Currency Module

ISO 4217 currency codes with their minor-unit precision, and conversion from
integer minor units to major-unit Decimals for display. Amounts inside the
engine are always integers of minor units; floats are never accepted.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from enum import Enum
from typing import Optional

# High precision for intermediate rate arithmetic
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes with minor-unit precision"""
    USD = ("USD", 2, "$")
    EUR = ("EUR", 2, "€")
    GBP = ("GBP", 2, "£")
    NGN = ("NGN", 2, "₦")
    KES = ("KES", 2, "KSh")
    ZAR = ("ZAR", 2, "R")
    GHS = ("GHS", 2, "GH₵")
    TZS = ("TZS", 2, "TSh")
    NAD = ("NAD", 2, "N$")
    UGX = ("UGX", 0, "USh")
    RWF = ("RWF", 0, "FRw")
    MWK = ("MWK", 2, "MK")
    ZMW = ("ZMW", 2, "ZK")
    XOF = ("XOF", 0, "CFA")
    XAF = ("XAF", 0, "FCFA")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @property
    def minor_per_major(self) -> int:
        """Number of minor units in one major unit"""
        return 10 ** self.precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unsupported currency: {code}")


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, halves away from zero"""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer ceiling division"""
    return -(-numerator // denominator)


def from_minor_units(amount_minor: int, currency: Currency) -> Decimal:
    """Convert integer minor units to a major-unit Decimal"""
    return (Decimal(amount_minor) / currency.minor_per_major).quantize(
        Decimal('0.1') ** currency.precision
    )


def format_minor(amount_minor: int, currency: Currency, with_symbol: bool = False) -> str:
    """Format minor units for display, e.g. "NAD 1,234.50" """
    major = from_minor_units(amount_minor, currency)
    formatted = f"{major:,.{currency.precision}f}"
    if with_symbol:
        return f"{currency.symbol}{formatted}"
    return f"{currency.code} {formatted}"


def minimum_principal_minor(currency: Currency, minimum_major: int) -> int:
    """Business floor for principal expressed in minor units"""
    return minimum_major * currency.minor_per_major


def parse_currency(code: Optional[str], default: Currency = Currency.USD) -> Currency:
    """Resolve an optional currency code, falling back to a default"""
    if not code:
        return default
    return Currency.from_code(code)
