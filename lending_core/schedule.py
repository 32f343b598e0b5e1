"""
Repayment Schedule Module

Stores the ordered installments of each loan and applies amounts to them.
The store never decides allocation order; that belongs to the payment
allocator. An installment never holds more than its amount due: any excess
is handed back to the caller as a remainder.
"""

from datetime import datetime, date
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord, parse_date, parse_datetime, utc_now
from .amortization import ScheduleRow
from .errors import ConflictError, NotFoundError, InvalidAmountError
from .logging_config import get_logger


logger = get_logger("schedule")


class InstallmentStatus(Enum):
    """Installment states; OVERDUE is derived at query time and never stored"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class Installment(StorageRecord):
    """Single repayment schedule row"""
    loan_id: str
    installment_no: int
    due_date: date
    amount_due_minor: int
    principal_component_minor: int
    interest_component_minor: int
    paid_minor: int = 0
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[datetime] = None

    @property
    def remaining_minor(self) -> int:
        return self.amount_due_minor - self.paid_minor

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @staticmethod
    def make_id(loan_id: str, installment_no: int) -> str:
        return f"{loan_id}:{installment_no}"


@dataclass
class ApplyResult:
    """Outcome of applying an amount to one installment"""
    installment: Installment
    applied_minor: int
    remainder_minor: int
    became_paid: bool


class RepaymentScheduleStore:
    """
    Owns the installments of every loan
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "installments"

    def create_schedule(self, loan_id: str, rows: List[ScheduleRow],
                        now: Optional[datetime] = None) -> List[Installment]:
        """
        Persist schedule rows for a loan

        Raises:
            ConflictError: If the loan already has a schedule
        """
        if self.has_schedule(loan_id):
            raise ConflictError(f"Loan {loan_id} already has a repayment schedule")

        now = now or utc_now()
        installments = []
        with self.storage.atomic():
            for row in rows:
                installment = Installment(
                    id=Installment.make_id(loan_id, row.installment_no),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan_id,
                    installment_no=row.installment_no,
                    due_date=row.due_date,
                    amount_due_minor=row.amount_due_minor,
                    principal_component_minor=row.principal_component_minor,
                    interest_component_minor=row.interest_component_minor
                )
                self.storage.insert(self.table_name, installment.id, installment.to_dict())
                installments.append(installment)

        logger.debug("Created %d installments for loan %s", len(installments), loan_id)
        return installments

    def has_schedule(self, loan_id: str) -> bool:
        return self.storage.exists(self.table_name, Installment.make_id(loan_id, 1))

    def get_schedule(self, loan_id: str) -> List[Installment]:
        """All installments of a loan ordered by installment number"""
        installments = [
            self._from_dict(data)
            for data in self.storage.find(self.table_name, {'loan_id': loan_id})
        ]
        installments.sort(key=lambda i: i.installment_no)
        return installments

    def get_installment(self, installment_id: str) -> Installment:
        """
        Raises:
            NotFoundError: If the installment does not exist
        """
        data = self.storage.load(self.table_name, installment_id)
        if not data:
            raise NotFoundError(f"Installment {installment_id} not found")
        return self._from_dict(data)

    def outstanding(self, loan_id: str) -> List[Installment]:
        """Unpaid installments, oldest due date first"""
        installments = [i for i in self.get_schedule(loan_id) if not i.is_paid]
        installments.sort(key=lambda i: (i.due_date, i.installment_no))
        return installments

    def balance(self, loan_id: str) -> int:
        """Sum of amounts due minus sum of amounts paid"""
        schedule = self.get_schedule(loan_id)
        return sum(i.amount_due_minor for i in schedule) - sum(i.paid_minor for i in schedule)

    def total_paid(self, loan_id: str) -> int:
        return sum(i.paid_minor for i in self.get_schedule(loan_id))

    def apply(self, installment_id: str, amount_minor: int,
              paid_at: Optional[datetime] = None) -> ApplyResult:
        """
        Apply an amount to one installment

        At most the remaining due is applied; the rest is returned as the
        remainder.

        Raises:
            InvalidAmountError: If amount is not a positive integer
            NotFoundError: If the installment does not exist
        """
        if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
            raise InvalidAmountError(f"Amount must be a positive integer, got {amount_minor!r}")

        installment = self.get_installment(installment_id)
        applied = min(installment.remaining_minor, amount_minor)
        was_paid = installment.is_paid

        if applied > 0:
            paid_at = paid_at or utc_now()
            installment.paid_minor += applied
            if installment.paid_minor >= installment.amount_due_minor:
                installment.status = InstallmentStatus.PAID
                installment.paid_at = paid_at
            else:
                installment.status = InstallmentStatus.PARTIAL
            installment.touch()
            self.storage.save(self.table_name, installment.id, installment.to_dict())

        return ApplyResult(
            installment=installment,
            applied_minor=applied,
            remainder_minor=amount_minor - applied,
            became_paid=installment.is_paid and not was_paid
        )

    def effective_status(self, installment: Installment, as_of: date) -> InstallmentStatus:
        """Stored status, or OVERDUE when unpaid past its due date"""
        if not installment.is_paid and installment.due_date < as_of:
            return InstallmentStatus.OVERDUE
        return installment.status

    def days_overdue(self, installment: Installment, as_of: date) -> int:
        if installment.is_paid:
            return 0
        return max(0, (as_of - installment.due_date).days)

    def overdue(self, loan_id: str, as_of: date) -> List[Installment]:
        """Unpaid installments whose due date has passed"""
        return [i for i in self.outstanding(loan_id) if i.due_date < as_of]

    def _from_dict(self, data: Dict) -> Installment:
        return Installment(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            installment_no=data['installment_no'],
            due_date=parse_date(data['due_date']),
            amount_due_minor=data['amount_due_minor'],
            principal_component_minor=data['principal_component_minor'],
            interest_component_minor=data['interest_component_minor'],
            paid_minor=data.get('paid_minor', 0),
            status=InstallmentStatus(data['status']),
            paid_at=parse_datetime(data.get('paid_at'))
        )
