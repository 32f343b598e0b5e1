"""
Credit Scoring Module

Borrower scores are recomputed from the payment event ledger on every
request, never maintained as a running counter. The replay walks the
trailing twelve calendar months:

- the score starts at 700 for borrowers with repayment history, 650 without
- each late payment event in a month deducts 10 (1-7 days), 35 (8-30 days)
  or 70 (31+ days)
- after each month the score is clamped to [300, 850] and carried forward

Unresolved risk flags then deduct from the current score only.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .storage import StorageInterface, StorageRecord, parse_datetime, utc_now
from .payments import PaymentAllocator, PaymentEvent, LatenessBucket
from .risk import RiskFlagEngine, RiskFlagType
from .logging_config import get_logger


logger = get_logger("credit_scoring")


LATE_DEDUCTIONS = {
    LatenessBucket.ON_TIME: 0,
    LatenessBucket.LATE_1_7: 10,
    LatenessBucket.LATE_8_30: 35,
    LatenessBucket.LATE_31_60: 70,
    LatenessBucket.LATE_60_PLUS: 70,
}

FLAG_DEDUCTIONS = {
    RiskFlagType.LATE_1_7: 10,
    RiskFlagType.LATE_8_30: 35,
    RiskFlagType.LATE_31_60: 70,
    RiskFlagType.DEFAULT: 150,
}

# Shown alongside the score; not part of the number
FACTOR_WEIGHTS = {
    "payment_history": 35,
    "credit_utilization": 30,
    "credit_age": 15,
    "credit_mix": 10,
    "new_inquiries": 10,
}


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def trailing_months(as_of: date, count: int) -> List[str]:
    """Month keys for the trailing window ending at as_of's month, oldest first"""
    keys = []
    year, month = as_of.year, as_of.month
    for _ in range(count):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


@dataclass
class BorrowerScore(StorageRecord):
    """Materialised latest score of a borrower"""
    borrower_id: str
    score: int
    as_of: date
    has_history: bool
    on_time_payments: int = 0
    late_payments: int = 0
    active_flags: int = 0
    factors: Dict[str, int] = field(default_factory=dict)
    history: List[Dict] = field(default_factory=list)


class CreditScoringEngine:
    """
    Derives borrower scores from payment events and active risk flags
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocator: PaymentAllocator,
        risk_engine: RiskFlagEngine,
        base_with_history: int = 700,
        no_history: int = 650,
        floor: int = 300,
        cap: int = 850,
        history_months: int = 12
    ):
        self.storage = storage
        self.allocator = allocator
        self.risk_engine = risk_engine
        self.base_with_history = base_with_history
        self.no_history = no_history
        self.floor = floor
        self.cap = cap
        self.history_months = history_months

        self.scores_table = "borrower_scores"

    @classmethod
    def from_config(cls, storage: StorageInterface, allocator: PaymentAllocator,
                    risk_engine: RiskFlagEngine, settings) -> 'CreditScoringEngine':
        return cls(
            storage, allocator, risk_engine,
            base_with_history=settings.score_base_with_history,
            no_history=settings.score_no_history,
            floor=settings.score_floor,
            cap=settings.score_cap,
            history_months=settings.score_history_months
        )

    def _clamp(self, score: int) -> int:
        return max(self.floor, min(self.cap, score))

    def calculate_score(self, borrower_id: str, as_of: Optional[date] = None) -> BorrowerScore:
        """
        Replay the ledger into a score without writing anything

        Args:
            borrower_id: Borrower to score
            as_of: Last day of the window (defaults to today)

        Returns:
            BorrowerScore with the 12-month history
        """
        as_of = as_of or utc_now().date()
        events: List[PaymentEvent] = [
            e for e in self.allocator.get_borrower_payment_events(borrower_id)
            if not e.is_overpayment and e.occurred_at.date() <= as_of
        ]
        has_history = bool(events)

        deductions_by_month: Dict[str, int] = {}
        for event in events:
            key = month_key(event.occurred_at.date())
            deductions_by_month[key] = deductions_by_month.get(key, 0) + LATE_DEDUCTIONS[event.lateness]

        score = self.base_with_history if has_history else self.no_history
        history = []
        for key in trailing_months(as_of, self.history_months):
            new_score = self._clamp(score - deductions_by_month.get(key, 0))
            history.append({"month": key, "score": new_score, "change": new_score - score})
            score = new_score

        active_flags = [
            f for f in self.risk_engine.active_flags(borrower_id)
            if f.flag_type in FLAG_DEDUCTIONS
        ]
        flag_penalty = sum(FLAG_DEDUCTIONS[f.flag_type] for f in active_flags)
        if flag_penalty:
            current = self._clamp(score - flag_penalty)
            history[-1]["change"] += current - score
            history[-1]["score"] = current
            score = current

        now = utc_now()
        return BorrowerScore(
            id=borrower_id,
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            score=score,
            as_of=as_of,
            has_history=has_history,
            on_time_payments=sum(1 for e in events if not e.lateness.is_late),
            late_payments=sum(1 for e in events if e.lateness.is_late),
            active_flags=len(active_flags),
            factors=dict(FACTOR_WEIGHTS),
            history=history
        )

    def refresh_score(self, borrower_id: str, as_of: Optional[date] = None) -> BorrowerScore:
        """Recompute and persist the materialised score row"""
        result = self.calculate_score(borrower_id, as_of)

        existing = self.storage.load(self.scores_table, borrower_id)
        if existing:
            result.created_at = parse_datetime(existing['created_at'])
        self.storage.save(self.scores_table, borrower_id, result.to_dict())

        logger.debug("Borrower %s scored %d", borrower_id, result.score)
        return result

    def get_score(self, borrower_id: str, as_of: Optional[date] = None) -> BorrowerScore:
        """Always recomputed from the ledger"""
        return self.refresh_score(borrower_id, as_of)
