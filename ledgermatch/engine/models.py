"""Data models for the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from ledgermatch.engine.errors import RecordError


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TransactionType(Enum):
    """Transaction direction."""
    CREDIT = "credit"
    DEBIT = "debit"

    @classmethod
    def from_amount(cls, amount: Decimal) -> "TransactionType":
        """Direction implied by a signed amount: negative is a debit."""
        return cls.DEBIT if amount < 0 else cls.CREDIT


class MatchType(Enum):
    """Classification of a scored transaction/statement pair."""
    EXACT = "exact"
    CLOSE = "close"
    FUZZY = "fuzzy"
    POSSIBLE = "possible"
    NONE = "none"


@dataclass(frozen=True)
class Transaction:
    """An internal system transaction. Amount is a positive magnitude; type carries the sign."""
    id: str
    amount: Decimal
    type: TransactionType
    occurred_at: datetime

    @property
    def abs_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def is_debit(self) -> bool:
        return self.type == TransactionType.DEBIT

    @property
    def is_credit(self) -> bool:
        return self.type == TransactionType.CREDIT

    @property
    def timestamp(self) -> datetime:
        """Occurrence time as an aware datetime (naive values are UTC)."""
        return as_utc(self.occurred_at)

    def validate(self) -> None:
        """
        Check the record invariants.

        Raises:
            RecordError: If the id is blank, the amount is zero or the type is unknown.
        """
        if not self.id or not self.id.strip():
            raise RecordError("transaction ID cannot be empty")
        if self.amount == 0:
            raise RecordError(f"transaction {self.id!r} amount cannot be zero")
        if not isinstance(self.type, TransactionType):
            raise RecordError(f"transaction {self.id!r} has invalid type: {self.type!r}")
        if not isinstance(self.occurred_at, datetime):
            raise RecordError(f"transaction {self.id!r} has invalid time: {self.occurred_at!r}")

    def __repr__(self) -> str:
        return (
            f"Transaction(id={self.id!r}, amount={self.amount}, type={self.type.value}, "
            f"occurred_at={self.timestamp.isoformat()})"
        )


@dataclass(frozen=True)
class BankStatementEntry:
    """A bank statement line. Amount is signed: negative means debit."""
    id: str
    amount: Decimal
    posted_on: date

    @property
    def abs_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def type(self) -> TransactionType:
        return TransactionType.from_amount(self.amount)

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @property
    def posted_at(self) -> datetime:
        """Posting date as midnight UTC."""
        return datetime.combine(self.posted_on, time.min, tzinfo=timezone.utc)

    def validate(self, today: Optional[date] = None) -> None:
        """
        Check the record invariants, including the accepted posting window.

        Args:
            today: Reference date for the window check. Defaults to today (UTC).

        Raises:
            RecordError: If the id is blank, the amount is zero, or the date is
                more than 1 day in the future or 10 years in the past.
        """
        if not self.id or not self.id.strip():
            raise RecordError("bank statement identifier cannot be empty")
        if self.amount == 0:
            raise RecordError(f"bank statement {self.id!r} amount cannot be zero")

        today = today or datetime.now(timezone.utc).date()
        if self.posted_on > today + timedelta(days=1):
            raise RecordError(
                f"bank statement {self.id!r} date cannot be more than 1 day in the future"
            )
        try:
            ten_years_ago = today.replace(year=today.year - 10)
        except ValueError:
            # Feb 29 has no counterpart ten years back
            ten_years_ago = today.replace(year=today.year - 10, day=28)
        if self.posted_on < ten_years_ago:
            raise RecordError(
                f"bank statement {self.id!r} date cannot be more than 10 years in the past"
            )

    def __repr__(self) -> str:
        return (
            f"BankStatementEntry(id={self.id!r}, amount={self.amount}, "
            f"posted_on={self.posted_on.isoformat()})"
        )


@dataclass(frozen=True)
class MatchResult:
    """Scored pairing of a transaction with a statement entry."""
    transaction: Transaction
    statement: BankStatementEntry
    match_type: MatchType
    confidence: float
    amount_difference: Decimal = Decimal("0")
    date_difference: timedelta = timedelta(0)
    reasons: Tuple[str, ...] = ()

    @property
    def is_matched(self) -> bool:
        return self.match_type != MatchType.NONE


@dataclass
class ReconciliationSummary:
    """Summary statistics for a reconciliation run."""
    total_transactions: int = 0
    total_statements: int = 0
    matched_transactions: int = 0
    matched_statements: int = 0
    unmatched_transactions: int = 0
    unmatched_statements: int = 0
    exact_matches: int = 0
    close_matches: int = 0
    fuzzy_matches: int = 0
    possible_matches: int = 0
    total_amount_matched: Decimal = Decimal("0")
    total_amount_unmatched: Decimal = Decimal("0")

    @property
    def match_rate(self) -> float:
        """Matched transactions as a percentage of all transactions."""
        if self.total_transactions == 0:
            return 0.0
        return (self.matched_transactions / self.total_transactions) * 100

    def is_consistent(self) -> bool:
        """Check that counts add up on both sides and across match types."""
        by_type = (
            self.exact_matches + self.close_matches
            + self.fuzzy_matches + self.possible_matches
        )
        return (
            self.matched_transactions + self.unmatched_transactions == self.total_transactions
            and self.matched_statements + self.unmatched_statements == self.total_statements
            and by_type == self.matched_transactions
        )


@dataclass
class ReconciliationResult:
    """Outcome of a reconciliation pass."""
    matches: List[MatchResult] = field(default_factory=list)
    unmatched_transactions: List[Transaction] = field(default_factory=list)
    unmatched_statements: List[BankStatementEntry] = field(default_factory=list)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)
