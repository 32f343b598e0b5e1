"""
Amortization Module

Pure functions turning loan terms into an interest amount, a total payable
and a list of installment rows. Simple add-on interest only: the total
interest percentage grows by a flat extra rate for every installment after
the first.

    total_interest_percent = base                                (once-off)
    total_interest_percent = base + extra * (installments - 1)   (installments)
    interest  = round_half_up(principal * total_interest_percent / 100)
    total     = principal + interest

Every row but the last is ceil(total / installments); the last row takes
the remainder so the schedule reconciles to the total exactly.
"""

from decimal import Decimal, InvalidOperation
from datetime import date
from dataclasses import dataclass, field
from typing import List, Optional, Union
from enum import Enum
import calendar

from .currency import Currency, round_half_up, ceil_div, minimum_principal_minor, format_minor
from .errors import ValidationError, InvalidAmountError


class PaymentType(Enum):
    """How the loan is repaid"""
    ONCE_OFF = "once_off"           # Single repayment one month after start
    INSTALLMENTS = "installments"   # Monthly installments


@dataclass
class LoanLimits:
    """Business limits applied when quoting a loan"""
    minimum_principal_major: int = 100
    max_base_rate_percent: Decimal = Decimal('100')
    max_extra_rate_percent: Decimal = Decimal('50')
    max_installments: int = 12

    @classmethod
    def from_config(cls, settings) -> 'LoanLimits':
        return cls(
            minimum_principal_major=settings.minimum_principal_major,
            max_base_rate_percent=Decimal(settings.max_base_rate_percent),
            max_extra_rate_percent=Decimal(settings.max_extra_rate_percent),
            max_installments=settings.max_installments
        )


@dataclass
class ScheduleRow:
    """Single row of a repayment schedule"""
    installment_no: int
    due_date: date
    amount_due_minor: int
    principal_component_minor: int
    interest_component_minor: int


@dataclass
class LoanQuote:
    """Fully derived loan terms"""
    principal_minor: int
    currency: Currency
    base_rate_percent: Decimal
    extra_rate_per_installment: Decimal
    payment_type: PaymentType
    installment_count: int
    total_interest_percent: Decimal
    interest_minor: int
    total_amount_minor: int
    start_date: date
    rows: List[ScheduleRow] = field(default_factory=list)

    @property
    def end_date(self) -> date:
        """Due date of the last installment"""
        return self.rows[-1].due_date

    def describe(self) -> str:
        return (
            f"{format_minor(self.principal_minor, self.currency)} at "
            f"{self.total_interest_percent}% over {self.installment_count} installment(s), "
            f"total {format_minor(self.total_amount_minor, self.currency)}"
        )


def to_rate(value: Union[Decimal, str, int], name: str = "rate") -> Decimal:
    """Parse a percentage rate; floats are accepted via their repr"""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        rate = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not rate.is_finite():
        raise ValidationError(f"{name} must be finite")
    return rate


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def total_interest_percent(base_rate_percent: Decimal, extra_rate_per_installment: Decimal,
                           payment_type: PaymentType, installment_count: int) -> Decimal:
    """Total add-on interest percentage for the whole loan"""
    if payment_type == PaymentType.ONCE_OFF:
        return base_rate_percent
    return base_rate_percent + extra_rate_per_installment * (installment_count - 1)


def interest_amount(principal_minor: int, interest_percent: Decimal) -> int:
    """Interest in minor units, rounded half up"""
    return round_half_up(Decimal(principal_minor) * interest_percent / Decimal('100'))


def split_evenly(total: int, parts: int) -> List[int]:
    """
    Split an integer total into parts

    Every part but the last is ceil(total / parts), the last takes the
    remainder. Parts never go negative: once the total is used up the
    remaining parts are zero.
    """
    if parts < 1:
        raise ValidationError("Cannot split into fewer than one part")
    share = ceil_div(total, parts)
    result = []
    remaining = total
    for _ in range(parts - 1):
        portion = min(share, remaining)
        result.append(portion)
        remaining -= portion
    result.append(remaining)
    return result


def split_floor(total: int, parts: int) -> List[int]:
    """Every part but the last is floor(total / parts), the last takes the remainder"""
    if parts < 1:
        raise ValidationError("Cannot split into fewer than one part")
    share = total // parts
    return [share] * (parts - 1) + [total - share * (parts - 1)]


def validate_terms(principal_minor: int, base_rate_percent: Decimal,
                   extra_rate_per_installment: Decimal, payment_type: PaymentType,
                   installment_count: int, currency: Currency,
                   limits: Optional[LoanLimits] = None) -> None:
    """
    Validate loan terms against business limits

    Raises:
        InvalidAmountError: If principal is not a positive integer
        ValidationError: If any term is out of range
    """
    limits = limits or LoanLimits()

    if isinstance(principal_minor, bool) or not isinstance(principal_minor, int):
        raise InvalidAmountError("Principal must be an integer of minor units")
    if principal_minor <= 0:
        raise InvalidAmountError("Principal must be positive")

    floor = minimum_principal_minor(currency, limits.minimum_principal_major)
    if principal_minor < floor:
        raise ValidationError(
            f"Principal {format_minor(principal_minor, currency)} is below the minimum "
            f"of {format_minor(floor, currency)}"
        )

    if not Decimal('0') <= base_rate_percent <= limits.max_base_rate_percent:
        raise ValidationError(
            f"Base rate must be between 0 and {limits.max_base_rate_percent}%"
        )
    if not Decimal('0') <= extra_rate_per_installment <= limits.max_extra_rate_percent:
        raise ValidationError(
            f"Extra rate per installment must be between 0 and {limits.max_extra_rate_percent}%"
        )

    if isinstance(installment_count, bool) or not isinstance(installment_count, int):
        raise ValidationError("Installment count must be an integer")
    if not 1 <= installment_count <= limits.max_installments:
        raise ValidationError(
            f"Installment count must be between 1 and {limits.max_installments}"
        )
    if payment_type == PaymentType.ONCE_OFF and installment_count != 1:
        raise ValidationError("Once-off loans have exactly one installment")


def build_schedule(total_amount_minor: int, interest_minor: int,
                   installment_count: int, start_date: date) -> List[ScheduleRow]:
    """
    Build installment rows

    Installment n falls due n calendar months after the start date.
    When the ceil split would leave trailing installments empty (small
    totals in zero-decimal currencies) the amounts fall back to a floor
    split, which still puts the remainder on the last row. Interest
    components follow the ceil/remainder split; the principal component
    is whatever is left of each row.

    Raises:
        ValidationError: If the total is smaller than the installment count
    """
    amounts = split_evenly(total_amount_minor, installment_count)
    if any(amount <= 0 for amount in amounts):
        amounts = split_floor(total_amount_minor, installment_count)
    if any(amount <= 0 for amount in amounts):
        raise ValidationError(
            f"Total of {total_amount_minor} is smaller than the {installment_count} "
            f"installments it must cover"
        )

    interests = split_evenly(interest_minor, installment_count)

    rows = []
    for index, (amount, interest) in enumerate(zip(amounts, interests)):
        interest = min(interest, amount)
        rows.append(ScheduleRow(
            installment_no=index + 1,
            due_date=add_months(start_date, index + 1),
            amount_due_minor=amount,
            principal_component_minor=amount - interest,
            interest_component_minor=interest
        ))

    # Clamping above can only move interest onto principal in degenerate splits
    shortfall = interest_minor - sum(row.interest_component_minor for row in rows)
    if shortfall:
        last = rows[-1]
        if last.principal_component_minor < shortfall:
            raise ValidationError("Interest cannot be allocated across the schedule")
        last.interest_component_minor += shortfall
        last.principal_component_minor -= shortfall

    return rows


def calculate_quote(principal_minor: int, base_rate_percent: Union[Decimal, str, int],
                    extra_rate_per_installment: Union[Decimal, str, int],
                    payment_type: PaymentType, installment_count: int,
                    currency: Currency, start_date: date,
                    limits: Optional[LoanLimits] = None) -> LoanQuote:
    """
    Derive the full quote for a loan

    Args:
        principal_minor: Principal in minor units
        base_rate_percent: Base interest percentage, 0-100
        extra_rate_per_installment: Added percentage per extra installment, 0-50
        payment_type: Once-off or installments
        installment_count: Number of installments, 1-12
        currency: Loan currency
        start_date: Loan start date; installment 1 is due one month later
        limits: Business limits (defaults apply when None)

    Returns:
        LoanQuote with derived totals and schedule rows

    Raises:
        ValidationError: If any term is out of range
    """
    base_rate = to_rate(base_rate_percent, "base_rate_percent")
    extra_rate = to_rate(extra_rate_per_installment, "extra_rate_per_installment")
    try:
        payment_type = PaymentType(payment_type)
    except ValueError:
        raise ValidationError(f"Unknown payment type: {payment_type}")

    validate_terms(principal_minor, base_rate, extra_rate, payment_type,
                   installment_count, currency, limits)

    interest_percent = total_interest_percent(base_rate, extra_rate, payment_type, installment_count)
    interest = interest_amount(principal_minor, interest_percent)
    total = principal_minor + interest

    return LoanQuote(
        principal_minor=principal_minor,
        currency=currency,
        base_rate_percent=base_rate,
        extra_rate_per_installment=extra_rate,
        payment_type=payment_type,
        installment_count=installment_count,
        total_interest_percent=interest_percent,
        interest_minor=interest,
        total_amount_minor=total,
        start_date=start_date,
        rows=build_schedule(total, interest, installment_count, start_date)
    )
