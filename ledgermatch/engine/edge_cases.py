"""
Secondary resolvers for cases the primary matching pass cannot settle.

Each capability is independent: duplicate clustering, same-day ambiguity,
split (many-to-one) matches, timezone disagreement and currency conversion.
"""

import dataclasses
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ledgermatch.engine.config import MatchingConfig, load_zone
from ledgermatch.engine.errors import DataNotLoadedError, PreconditionError
from ledgermatch.engine.matcher import MatchingEngine
from ledgermatch.engine.models import BankStatementEntry, MatchResult, Transaction

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(hours=1)

MIN_COMBINATION_SIZE = 2
MAX_COMBINATION_SIZE = 4

TIMEZONE_CANDIDATES = (
    "UTC",
    "Local",
    "US/Eastern",
    "US/Central",
    "US/Mountain",
    "US/Pacific",
    "Europe/London",
)


@dataclass
class DuplicateGroup:
    """Transactions that look like repeated bookings of one event."""
    group_id: str
    transactions: List[Transaction]
    confidence: float
    reason: str


@dataclass
class SameDayMatch:
    """Records sharing a normalized date where pairing is ambiguous."""
    date: date
    transactions: List[Transaction]
    statements: List[BankStatementEntry]
    potential_matches: List[MatchResult] = field(default_factory=list)
    ambiguity_score: float = 0.0
    resolution_strategy: str = ""


@dataclass
class PartialMatch:
    """Several statement entries that together settle one transaction."""
    transaction: Transaction
    statements: Tuple[BankStatementEntry, ...]
    total_amount: Decimal
    amount_difference: Decimal
    match_ratio: float
    confidence: float


@dataclass
class TimezoneMatch:
    timezone: str
    adjusted_transaction_time: datetime
    adjusted_statement_time: datetime
    score: float


@dataclass
class TimezoneResolution:
    """Best zone found for reading a transaction and a statement on the same date."""
    transaction: Transaction
    statement: BankStatementEntry
    original_transaction_time: datetime
    original_statement_time: datetime
    best_match: Optional[TimezoneMatch] = None
    confidence: float = 0.0


@dataclass
class CurrencyMatch:
    """Comparison of a converted transaction amount with a statement entry."""
    transaction: Transaction
    statement: BankStatementEntry
    exchange_rate: Decimal
    converted_amount: Decimal
    difference: Decimal
    is_match: bool
    confidence: float


class EdgeCaseResolver:
    """Explains or repairs what the primary matching pass leaves behind."""

    def __init__(self, config: Optional[MatchingConfig] = None):
        config = config or MatchingConfig.default()
        config.validate()
        self.config = config

    # Duplicates

    def detect_duplicates(self, transactions: Sequence[Transaction]) -> List[DuplicateGroup]:
        """
        Cluster transactions that share amount and direction within an hour of each other.

        Clustering is single-linkage: a transaction joins a group when it is
        within the window of any member. Groups are ordered by their first
        member in input order, which is also the reference for confidence.

        Args:
            transactions: Transactions to inspect.

        Returns:
            Disjoint groups with at least two members.
        """
        buckets: Dict[tuple, List[Tuple[int, Transaction]]] = defaultdict(list)
        for position, txn in enumerate(transactions):
            buckets[(txn.abs_amount, txn.type)].append((position, txn))

        clusters: List[List[Tuple[int, Transaction]]] = []
        for members in buckets.values():
            if len(members) < 2:
                continue
            # Within a bucket, single-linkage reduces to splitting the time-sorted run at gaps over the window
            ordered = sorted(members, key=lambda item: item[1].timestamp)
            run = [ordered[0]]
            for previous, current in zip(ordered, ordered[1:]):
                if self.is_potential_duplicate(previous[1], current[1]):
                    run.append(current)
                else:
                    clusters.append(run)
                    run = [current]
            clusters.append(run)

        groups: List[DuplicateGroup] = []
        for cluster in sorted((c for c in clusters if len(c) > 1), key=lambda c: min(p for p, _ in c)):
            members = [txn for _, txn in sorted(cluster, key=lambda item: item[0])]
            groups.append(DuplicateGroup(
                group_id=f"DUP_{members[0].id}",
                transactions=members,
                confidence=self._duplicate_confidence(members),
                reason=(
                    f"Found {len(members)} transactions with same amount ({members[0].amount}) "
                    f"and type ({members[0].type.value}) within short time period"
                ),
            ))

        if groups:
            logger.info("Detected %d duplicate transaction groups", len(groups))
        return groups

    def is_potential_duplicate(self, first: Transaction, second: Transaction) -> bool:
        if first.abs_amount != second.abs_amount:
            return False
        if first.type != second.type:
            return False
        return abs(first.timestamp - second.timestamp) <= DUPLICATE_WINDOW

    def _duplicate_confidence(self, members: List[Transaction]) -> float:
        if len(members) < 2:
            return 0.0

        reference = members[0]
        total = 0.0
        for txn in members[1:]:
            # Amount and type always agree inside a group, so time proximity drives the score
            score = 0.0
            if txn.abs_amount == reference.abs_amount:
                score += 0.4
            if txn.type == reference.type:
                score += 0.3
            gap = abs(txn.timestamp - reference.timestamp)
            if gap <= timedelta(minutes=5):
                score += 0.3
            elif gap <= timedelta(minutes=30):
                score += 0.2
            elif gap <= timedelta(hours=1):
                score += 0.1
            total += score

        return total / (len(members) - 1)

    # Same-day ambiguity

    def handle_same_day(
        self,
        transactions: Sequence[Transaction],
        statements: Sequence[BankStatementEntry],
        engine: MatchingEngine,
    ) -> List[SameDayMatch]:
        """
        Characterize dates where more than one record on either side makes pairing ambiguous.

        Args:
            transactions: Transactions to group by normalized date.
            statements: Statement entries to group by normalized date.
            engine: Engine with statements loaded, used to score candidates.

        Returns:
            One SameDayMatch per ambiguous date, ordered by date.

        Raises:
            DataNotLoadedError: If the engine has no statements loaded.
        """
        txns_by_date: Dict[date, List[Transaction]] = defaultdict(list)
        stmts_by_date: Dict[date, List[BankStatementEntry]] = defaultdict(list)
        for txn in transactions:
            txns_by_date[self._normalized_date(txn.timestamp)].append(txn)
        for stmt in statements:
            stmts_by_date[self._normalized_date(stmt.posted_at)].append(stmt)

        results: List[SameDayMatch] = []
        for day in sorted(set(txns_by_date) | set(stmts_by_date)):
            day_txns = txns_by_date.get(day, [])
            day_stmts = stmts_by_date.get(day, [])
            if len(day_txns) <= 1 and len(day_stmts) <= 1:
                continue

            potential: List[MatchResult] = []
            for txn in day_txns:
                for match in engine.find_matches(txn):
                    if self._normalized_date(match.statement.posted_at) == day:
                        potential.append(match)

            results.append(SameDayMatch(
                date=day,
                transactions=day_txns,
                statements=day_stmts,
                potential_matches=potential,
                ambiguity_score=self._ambiguity_score(day_txns, day_stmts, potential),
                resolution_strategy=self._resolution_strategy(day_txns, day_stmts, potential),
            ))

        if results:
            logger.info("Detected %d dates with ambiguous same-day records", len(results))
        return results

    def _normalized_date(self, value: datetime) -> date:
        return self.config.normalize_time(value).date()

    def _ambiguity_score(
        self,
        transactions: List[Transaction],
        statements: List[BankStatementEntry],
        matches: List[MatchResult],
    ) -> float:
        if len(transactions) <= 1 and len(statements) <= 1:
            return 0.0
        max_pairs = len(transactions) * len(statements)
        if max_pairs == 0:
            return 0.0
        return (max_pairs - len(matches)) / max_pairs

    def _resolution_strategy(
        self,
        transactions: List[Transaction],
        statements: List[BankStatementEntry],
        matches: List[MatchResult],
    ) -> str:
        if not matches:
            return "no_matches_found"
        if len(transactions) == len(statements) and len(matches) == len(transactions):
            return "one_to_one_mapping"
        if len(transactions) < len(statements):
            return "consolidation_needed"
        if len(transactions) > len(statements):
            return "splitting_needed"
        return "manual_review_required"

    # Partial (split) matches

    def handle_partial_matches(
        self, txn: Transaction, candidates: Sequence[BankStatementEntry]
    ) -> List[PartialMatch]:
        """
        Find combinations of 2 to 4 statement entries whose magnitudes add up to the transaction.

        Single entries are never returned; a one-entry "combination" is an
        ordinary match and belongs to the primary engine.

        Args:
            txn: Transaction to settle.
            candidates: Statement entries to combine. Cost grows as C(n, 4).

        Returns:
            Accepted combinations, highest confidence first. Empty when partial
            matching is disabled.
        """
        if not self.config.enable_partial_matching:
            return []

        target = txn.abs_amount
        tolerance = self.config.amount_tolerance(target)
        min_ratio = 1.0 - self.config.max_partial_match_ratio

        results: List[PartialMatch] = []
        largest = min(MAX_COMBINATION_SIZE, len(candidates))
        for size in range(MIN_COMBINATION_SIZE, largest + 1):
            for combo in combinations(candidates, size):
                total = sum((stmt.abs_amount for stmt in combo), Decimal("0"))
                difference = abs(total - target)
                if difference > tolerance:
                    continue
                ratio = float(total / target)
                if ratio < min_ratio:
                    continue
                results.append(PartialMatch(
                    transaction=txn,
                    statements=combo,
                    total_amount=total,
                    amount_difference=difference,
                    match_ratio=ratio,
                    confidence=self._partial_confidence(len(combo), difference, tolerance),
                ))

        results.sort(key=lambda r: r.confidence, reverse=True)
        logger.debug("Found %d partial matches for transaction %s", len(results), txn.id)
        return results

    def partial_candidates(
        self, engine: MatchingEngine, txn: Transaction
    ) -> List[BankStatementEntry]:
        """
        Statement entries that could be parts of a split payment for a transaction.

        Picks entries of the same direction, smaller than the transaction and
        within the date tolerance, capped at the configured candidate limit.

        Raises:
            DataNotLoadedError: If the engine has no statements loaded.
        """
        index = engine.statement_index
        if index is None:
            raise DataNotLoadedError("data not loaded: call load_statements() before matching")
        tolerance_days = self.config.date_tolerance_days
        # The index is keyed on posting dates, which can sit a day away from the zoned time
        span = tolerance_days + 1
        if self.config.ignore_weekends:
            span += 2 * (tolerance_days // 5 + 1)

        txn_time = self.config.normalize_time(txn.timestamp)
        nearby = index.by_date_range(txn_time.date() - timedelta(days=span),
                                     txn_time.date() + timedelta(days=span))
        found = [
            stmt for stmt in nearby
            if stmt.type == txn.type
            and stmt.abs_amount < txn.abs_amount
            and self.config.is_within_date_tolerance(
                txn_time, self.config.normalize_time(stmt.posted_at)
            )
        ]
        return found[:self.config.max_candidates_per_transaction]

    def _partial_confidence(self, size: int, difference: Decimal, tolerance: Decimal) -> float:
        amount_score = 0.0
        if tolerance > 0:
            amount_score = 1.0 - float(difference / tolerance)
        elif difference == 0:
            amount_score = 1.0

        complexity_penalty = max(0.1, 1.0 - 0.1 * (size - 1))
        return amount_score * complexity_penalty

    # Timezones

    def resolve_timezone_mismatch(
        self, txn: Transaction, stmt: BankStatementEntry
    ) -> TimezoneResolution:
        """Try each candidate zone and keep the one that puts both records closest in date."""
        resolution = TimezoneResolution(
            transaction=txn,
            statement=stmt,
            original_transaction_time=txn.timestamp,
            original_statement_time=stmt.posted_at,
        )

        for name in TIMEZONE_CANDIDATES:
            if name == "Local":
                txn_time = txn.timestamp.astimezone()
                stmt_time = stmt.posted_at.astimezone()
            else:
                zone = load_zone(name)
                if zone is None:
                    logger.debug("Timezone %s unavailable, skipping", name)
                    continue
                txn_time = txn.timestamp.astimezone(zone)
                stmt_time = stmt.posted_at.astimezone(zone)

            score = self._timezone_score(txn_time, stmt_time)
            if score > resolution.confidence:
                resolution.confidence = score
                resolution.best_match = TimezoneMatch(
                    timezone=name,
                    adjusted_transaction_time=txn_time,
                    adjusted_statement_time=stmt_time,
                    score=score,
                )

        return resolution

    def _timezone_score(self, txn_time: datetime, stmt_time: datetime) -> float:
        days = abs((txn_time.date() - stmt_time.date()).days)
        if days == 0:
            return 1.0
        if days <= 1:
            return 0.8
        if days <= 2:
            return 0.6
        if days <= 3:
            return 0.4
        return 0.0

    def normalize_transactions(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        """Copies of the transactions with occurrence times normalized by the config."""
        return [
            dataclasses.replace(txn, occurred_at=self.config.normalize_time(txn.timestamp))
            for txn in transactions
        ]

    # Currency

    def handle_currency_mismatch(
        self,
        txn: Transaction,
        stmt: BankStatementEntry,
        exchange_rate: Union[Decimal, str, int, float],
    ) -> CurrencyMatch:
        """
        Compare a transaction converted at a given rate with a statement entry.

        Args:
            txn: Transaction in its own currency.
            stmt: Statement entry in the bank's currency.
            exchange_rate: Units of statement currency per unit of transaction currency.

        Raises:
            PreconditionError: If the exchange rate is not a finite positive number.
        """
        try:
            rate = Decimal(str(exchange_rate))
        except InvalidOperation:
            raise PreconditionError(f"exchange rate is not a number: {exchange_rate!r}") from None
        if not rate.is_finite() or rate <= 0:
            raise PreconditionError(f"exchange rate must be positive: {exchange_rate}")

        converted = txn.abs_amount * rate
        difference = abs(converted - stmt.abs_amount)
        tolerance = self.config.amount_tolerance(stmt.abs_amount)
        is_match = difference <= tolerance

        confidence = 0.0
        if is_match:
            if tolerance > 0:
                confidence = 1.0 - float(difference / tolerance)
            elif difference == 0:
                confidence = 1.0

        return CurrencyMatch(
            transaction=txn,
            statement=stmt,
            exchange_rate=rate,
            converted_amount=converted,
            difference=difference,
            is_match=is_match,
            confidence=confidence,
        )
