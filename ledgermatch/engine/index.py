"""
Lookup structures for candidate selection.

Each side of a reconciliation gets its own index. The two classes mirror each
other on purpose: transactions carry a direction and a positive amount while
statement entries carry a signed amount, so the candidate queries differ in
how the amount range is resolved.
"""

from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Union

from ledgermatch.engine.config import MatchingConfig
from ledgermatch.engine.models import BankStatementEntry, Transaction, TransactionType

DateLike = Union[date, datetime]


def _day(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


@dataclass
class AmountGroup:
    """All records sharing one exact amount."""
    amount: Decimal
    records: list = field(default_factory=list)


@dataclass(frozen=True)
class IndexStats:
    """Size figures for an index."""
    total_records: int = 0
    unique_amounts: int = 0
    unique_dates: int = 0
    unique_types: int = 0


class TransactionIndex:
    """Index over system transactions keyed by amount, date and type."""

    def __init__(self, transactions: List[Transaction]):
        self.transactions: List[Transaction] = list(transactions)
        self.exact_amount: Dict[Decimal, List[Transaction]] = defaultdict(list)
        self.by_day: Dict[date, List[Transaction]] = defaultdict(list)
        self.by_direction: Dict[TransactionType, List[Transaction]] = defaultdict(list)
        self.amount_groups: List[AmountGroup] = []
        self._amount_keys: List[Decimal] = []

        for txn in self.transactions:
            self._index_record(txn)
        self._build_amount_groups()

    def _index_record(self, txn: Transaction) -> None:
        self.exact_amount[txn.amount].append(txn)
        self.by_day[txn.timestamp.date()].append(txn)
        self.by_direction[txn.type].append(txn)

    def _build_amount_groups(self) -> None:
        self.amount_groups = [
            AmountGroup(amount=amount, records=list(records))
            for amount, records in sorted(self.exact_amount.items())
        ]
        self._amount_keys = [group.amount for group in self.amount_groups]

    def add(self, txn: Transaction) -> None:
        """Append a transaction and refresh the sorted amount groups."""
        self.transactions.append(txn)
        self._index_record(txn)
        self._build_amount_groups()

    def by_exact_amount(self, amount: Decimal) -> List[Transaction]:
        return list(self.exact_amount.get(amount, []))

    def by_amount_range(self, min_amount: Decimal, max_amount: Decimal) -> List[Transaction]:
        """Transactions with min_amount <= amount <= max_amount, ascending by amount."""
        result: List[Transaction] = []
        start = bisect_left(self._amount_keys, min_amount)
        for group in self.amount_groups[start:]:
            if group.amount > max_amount:
                break
            result.extend(group.records)
        return result

    def by_date(self, value: DateLike) -> List[Transaction]:
        return list(self.by_day.get(_day(value), []))

    def by_date_range(self, start: DateLike, end: DateLike) -> List[Transaction]:
        """Transactions dated between start and end inclusive."""
        result: List[Transaction] = []
        current, last = _day(start), _day(end)
        while current <= last:
            result.extend(self.by_day.get(current, []))
            current += timedelta(days=1)
        return result

    def by_type(self, txn_type: TransactionType) -> List[Transaction]:
        return list(self.by_direction.get(txn_type, []))

    def candidates(
        self, stmt: BankStatementEntry, config: MatchingConfig
    ) -> List[Transaction]:
        """Transactions eligible for scoring against a statement entry."""
        tolerance = config.amount_tolerance(stmt.abs_amount)
        found = self.by_amount_range(stmt.abs_amount - tolerance, stmt.abs_amount + tolerance)

        if config.date_tolerance_days > 0:
            stmt_time = config.normalize_time(stmt.posted_at)
            found = [
                txn for txn in found
                if config.is_within_date_tolerance(config.normalize_time(txn.timestamp), stmt_time)
            ]

        if config.enable_type_matching:
            expected = stmt.type
            found = [txn for txn in found if txn.type == expected]

        return found[:config.max_candidates_per_transaction]

    def stats(self) -> IndexStats:
        return IndexStats(
            total_records=len(self.transactions),
            unique_amounts=len(self.amount_groups),
            unique_dates=len(self.by_day),
            unique_types=len(self.by_direction),
        )


class StatementIndex:
    """Index over bank statement entries keyed by signed amount and date."""

    def __init__(self, statements: List[BankStatementEntry]):
        self.statements: List[BankStatementEntry] = list(statements)
        self.exact_amount: Dict[Decimal, List[BankStatementEntry]] = defaultdict(list)
        self.by_day: Dict[date, List[BankStatementEntry]] = defaultdict(list)
        self.amount_groups: List[AmountGroup] = []
        self._amount_keys: List[Decimal] = []

        for stmt in self.statements:
            self._index_record(stmt)
        self._build_amount_groups()

    def _index_record(self, stmt: BankStatementEntry) -> None:
        self.exact_amount[stmt.amount].append(stmt)
        self.by_day[stmt.posted_on].append(stmt)

    def _build_amount_groups(self) -> None:
        self.amount_groups = [
            AmountGroup(amount=amount, records=list(records))
            for amount, records in sorted(self.exact_amount.items())
        ]
        self._amount_keys = [group.amount for group in self.amount_groups]

    def add(self, stmt: BankStatementEntry) -> None:
        """Append a statement entry and refresh the sorted amount groups."""
        self.statements.append(stmt)
        self._index_record(stmt)
        self._build_amount_groups()

    def by_exact_amount(self, amount: Decimal) -> List[BankStatementEntry]:
        return list(self.exact_amount.get(amount, []))

    def by_amount_range(self, min_amount: Decimal, max_amount: Decimal) -> List[BankStatementEntry]:
        """Entries with min_amount <= signed amount <= max_amount, ascending."""
        result: List[BankStatementEntry] = []
        start = bisect_left(self._amount_keys, min_amount)
        for group in self.amount_groups[start:]:
            if group.amount > max_amount:
                break
            result.extend(group.records)
        return result

    def by_date(self, value: DateLike) -> List[BankStatementEntry]:
        return list(self.by_day.get(_day(value), []))

    def by_date_range(self, start: DateLike, end: DateLike) -> List[BankStatementEntry]:
        """Entries posted between start and end inclusive."""
        result: List[BankStatementEntry] = []
        current, last = _day(start), _day(end)
        while current <= last:
            result.extend(self.by_day.get(current, []))
            current += timedelta(days=1)
        return result

    def candidates(
        self, txn: Transaction, config: MatchingConfig
    ) -> List[BankStatementEntry]:
        """Statement entries eligible for scoring against a transaction."""
        tolerance = config.amount_tolerance(txn.abs_amount)
        # Debits appear on the statement as negative amounts
        signed = -txn.abs_amount if txn.is_debit else txn.abs_amount
        found = self.by_amount_range(signed - tolerance, signed + tolerance)

        if config.date_tolerance_days > 0:
            txn_time = config.normalize_time(txn.timestamp)
            found = [
                stmt for stmt in found
                if config.is_within_date_tolerance(txn_time, config.normalize_time(stmt.posted_at))
            ]

        if config.enable_type_matching:
            found = [stmt for stmt in found if stmt.type == txn.type]

        return found[:config.max_candidates_per_transaction]

    def stats(self) -> IndexStats:
        return IndexStats(
            total_records=len(self.statements),
            unique_amounts=len(self.amount_groups),
            unique_dates=len(self.by_day),
            unique_types=0,
        )
