"""Core reconciliation matching engine."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple

from ledgermatch.engine.config import MatchingConfig
from ledgermatch.engine.errors import DataNotLoadedError, PreconditionError
from ledgermatch.engine.index import IndexStats, StatementIndex, TransactionIndex
from ledgermatch.engine.models import (
    BankStatementEntry,
    MatchResult,
    MatchType,
    ReconciliationResult,
    ReconciliationSummary,
    Transaction,
)

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 100


class EngineState(Enum):
    """Lifecycle of a MatchingEngine."""
    EMPTY = "empty"
    TRANSACTIONS_LOADED = "transactions_loaded"
    STATEMENTS_LOADED = "statements_loaded"
    READY = "ready"
    RECONCILED = "reconciled"


class MatchingEngine:
    """
    Matches system transactions against bank statement entries.

    Matching Strategy:
    1. Candidate selection: indexed lookup by amount range, date tolerance and direction
    2. Scoring: weighted amount, date and type sub-scores give a confidence in [0, 1]
    3. Assignment: transactions are visited in load order; each claims its best
       candidate if that statement is still free

    Assignment is greedy. A transaction whose best statement was already claimed
    by an earlier transaction stays unmatched even if a lower-ranked candidate is
    free, so the result is not a maximum-weight matching.

    An engine is not safe for concurrent use. Run separate engines in parallel instead.
    """

    def __init__(self, config: Optional[MatchingConfig] = None):
        """
        Initialize the engine.

        Args:
            config: Matching configuration. Defaults to MatchingConfig.default().

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        config = config or MatchingConfig.default()
        config.validate()
        self._config = config
        self.transaction_index: Optional[TransactionIndex] = None
        self.statement_index: Optional[StatementIndex] = None
        self._reconciled = False

        logger.debug("Created matching engine with %s", config)

    @property
    def config(self) -> MatchingConfig:
        return self._config

    @property
    def state(self) -> EngineState:
        if self.transaction_index is None and self.statement_index is None:
            return EngineState.EMPTY
        if self.statement_index is None:
            return EngineState.TRANSACTIONS_LOADED
        if self.transaction_index is None:
            return EngineState.STATEMENTS_LOADED
        if self._reconciled:
            return EngineState.RECONCILED
        return EngineState.READY

    def load_transactions(self, transactions: Sequence[Transaction]) -> None:
        """
        Index the system transactions for this engine.

        Raises:
            PreconditionError: If no transactions are given or an id repeats.
        """
        if transactions is None:
            raise PreconditionError("transactions must be provided")
        if len(transactions) == 0:
            logger.warning("No transactions provided to matching engine")
            raise PreconditionError("no transactions to reconcile")
        _require_unique_ids(transactions, "transaction")

        logger.info("Loading %d transactions into matching engine", len(transactions))
        self.transaction_index = TransactionIndex(list(transactions))
        self._reconciled = False

    def load_statements(self, statements: Sequence[BankStatementEntry]) -> None:
        """
        Index the bank statement entries for this engine.

        Raises:
            PreconditionError: If no statement entries are given or an id repeats.
        """
        if statements is None:
            raise PreconditionError("bank statements must be provided")
        if len(statements) == 0:
            logger.warning("No bank statements provided to matching engine")
            raise PreconditionError("no bank statements to reconcile")
        _require_unique_ids(statements, "statement")

        logger.info("Loading %d bank statements into matching engine", len(statements))
        self.statement_index = StatementIndex(list(statements))
        self._reconciled = False

    def reconcile(self) -> ReconciliationResult:
        """
        Match every loaded transaction against the loaded statement entries.

        Returns:
            ReconciliationResult with matches, leftovers on both sides and a summary.

        Raises:
            DataNotLoadedError: If either side has not been loaded.
        """
        self._require_transactions()
        self._require_statements()

        transactions = self.transaction_index.transactions
        statements = self.statement_index.statements
        logger.info(
            "Reconciling %d transactions against %d bank statements",
            len(transactions), len(statements),
        )

        matches: List[MatchResult] = []
        claimed_transactions: Set[str] = set()
        claimed_statements: Set[str] = set()

        for i, txn in enumerate(transactions):
            if i and i % PROGRESS_INTERVAL == 0:
                logger.debug("Processed %d/%d transactions", i, len(transactions))

            if txn.id in claimed_transactions:
                continue

            candidates = self.statement_index.candidates(txn, self._config)
            if not candidates:
                continue

            scored = self._score_candidates(txn, candidates)
            if not scored:
                continue

            best = scored[0]
            if best.statement.id in claimed_statements:
                # No fall-through to the next candidate
                logger.debug(
                    "Best statement %s for transaction %s already claimed",
                    best.statement.id, txn.id,
                )
                continue

            matches.append(best)
            claimed_transactions.add(txn.id)
            claimed_statements.add(best.statement.id)
            logger.debug(
                "Matched transaction %s to statement %s (%s, %.3f)",
                txn.id, best.statement.id, best.match_type.value, best.confidence,
            )

        unmatched_transactions = [t for t in transactions if t.id not in claimed_transactions]
        unmatched_statements = [s for s in statements if s.id not in claimed_statements]
        summary = self._generate_summary(matches, unmatched_transactions, unmatched_statements)
        self._reconciled = True

        logger.info(
            "Reconciliation complete: %d matches, %d unmatched transactions, "
            "%d unmatched statements (%.1f%% match rate)",
            len(matches), len(unmatched_transactions), len(unmatched_statements),
            summary.match_rate,
        )

        return ReconciliationResult(
            matches=matches,
            unmatched_transactions=unmatched_transactions,
            unmatched_statements=unmatched_statements,
            summary=summary,
        )

    def find_matches(self, txn: Transaction) -> List[MatchResult]:
        """Scored statement candidates for one transaction, best first, without assignment."""
        self._require_statements()
        candidates = self.statement_index.candidates(txn, self._config)
        return self._score_candidates(txn, candidates)

    def find_matches_for_statement(self, stmt: BankStatementEntry) -> List[MatchResult]:
        """Scored transaction candidates for one statement entry, best first."""
        self._require_transactions()
        candidates = self.transaction_index.candidates(stmt, self._config)

        results: List[MatchResult] = []
        for txn in candidates:
            if txn is None:
                logger.warning("Skipping empty transaction candidate for statement %s", stmt.id)
                continue
            result = self.score_match(txn, stmt)
            if result.confidence >= self._config.min_confidence_score:
                results.append(result)

        return sorted(results, key=lambda r: r.confidence, reverse=True)

    def _score_candidates(
        self, txn: Transaction, candidates: List[BankStatementEntry]
    ) -> List[MatchResult]:
        results: List[MatchResult] = []
        for stmt in candidates:
            if stmt is None:
                logger.warning("Skipping empty statement candidate for transaction %s", txn.id)
                continue
            result = self.score_match(txn, stmt)
            if result.confidence >= self._config.min_confidence_score:
                results.append(result)

        # sorted() is stable, so ties keep index order
        return sorted(results, key=lambda r: r.confidence, reverse=True)

    def score_match(self, txn: Transaction, stmt: BankStatementEntry) -> MatchResult:
        """
        Score a transaction/statement pair.

        The result depends only on the two records and the configuration.
        """
        txn_time = self._config.normalize_time(txn.timestamp)
        stmt_time = self._config.normalize_time(stmt.posted_at)

        amount_score = self._amount_score(txn, stmt)
        date_score = self._date_score(txn_time, stmt_time)
        type_score = self._type_score(txn, stmt)

        weights = self._config.weights
        confidence = (
            amount_score * weights.amount
            + date_score * weights.date
            + type_score * weights.type
        )

        return MatchResult(
            transaction=txn,
            statement=stmt,
            match_type=self._classify(confidence, amount_score, date_score),
            confidence=confidence,
            amount_difference=self._amount_difference(txn, stmt),
            date_difference=abs(txn_time - stmt_time),
            reasons=tuple(self._reasons(amount_score, date_score, type_score)),
        )

    def _amount_score(self, txn: Transaction, stmt: BankStatementEntry) -> float:
        txn_amount = txn.abs_amount
        stmt_amount = stmt.abs_amount
        if txn_amount == stmt_amount:
            return 1.0

        tolerance = self._config.amount_tolerance(txn_amount)
        if tolerance == 0:
            return 0.0

        difference = abs(txn_amount - stmt_amount)
        if difference > tolerance:
            return 0.0
        return max(0.0, 1.0 - float(difference / tolerance))

    def _date_score(self, txn_time: datetime, stmt_time: datetime) -> float:
        if self._config.date_tolerance_days == 0:
            return 1.0 if txn_time.date() == stmt_time.date() else 0.0

        if not self._config.is_within_date_tolerance(txn_time, stmt_time):
            return 0.0

        max_diff = timedelta(days=self._config.date_tolerance_days)
        return max(0.0, 1.0 - abs(txn_time - stmt_time) / max_diff)

    def _type_score(self, txn: Transaction, stmt: BankStatementEntry) -> float:
        if not self._config.enable_type_matching:
            return 1.0
        return 1.0 if txn.type == stmt.type else 0.0

    def _amount_difference(self, txn: Transaction, stmt: BankStatementEntry) -> Decimal:
        """Absolute difference between the magnitudes; sign conventions differ per side."""
        return abs(txn.abs_amount - stmt.abs_amount)

    def _classify(self, confidence: float, amount_score: float, date_score: float) -> MatchType:
        if confidence >= 0.95 and amount_score == 1.0 and date_score >= 0.9:
            return MatchType.EXACT
        if confidence >= 0.85:
            return MatchType.CLOSE
        if confidence >= 0.70 and self._config.enable_fuzzy_matching:
            return MatchType.FUZZY
        if confidence >= self._config.min_confidence_score:
            return MatchType.POSSIBLE
        return MatchType.NONE

    def _reasons(self, amount_score: float, date_score: float, type_score: float) -> List[str]:
        reasons: List[str] = []

        if amount_score == 1.0:
            reasons.append("Exact amount match")
        elif amount_score > 0.8:
            reasons.append("Close amount match")
        elif amount_score > 0.0:
            reasons.append("Amount within tolerance")

        if date_score == 1.0:
            reasons.append("Same date")
        elif date_score > 0.8:
            reasons.append("Close date match")
        elif date_score > 0.0:
            reasons.append("Date within tolerance")

        if self._config.enable_type_matching:
            if type_score == 1.0:
                reasons.append("Transaction type matches")
            else:
                reasons.append("Transaction type mismatch")

        return reasons

    def _generate_summary(
        self,
        matches: List[MatchResult],
        unmatched_transactions: List[Transaction],
        unmatched_statements: List[BankStatementEntry],
    ) -> ReconciliationSummary:
        """Generate reconciliation summary statistics."""
        summary = ReconciliationSummary(
            total_transactions=len(self.transaction_index.transactions),
            total_statements=len(self.statement_index.statements),
            matched_transactions=len(matches),
            matched_statements=len(matches),
            unmatched_transactions=len(unmatched_transactions),
            unmatched_statements=len(unmatched_statements),
        )

        for match in matches:
            if match.match_type == MatchType.EXACT:
                summary.exact_matches += 1
            elif match.match_type == MatchType.CLOSE:
                summary.close_matches += 1
            elif match.match_type == MatchType.FUZZY:
                summary.fuzzy_matches += 1
            else:
                summary.possible_matches += 1
            summary.total_amount_matched += match.transaction.abs_amount

        summary.total_amount_unmatched = sum(
            (t.abs_amount for t in unmatched_transactions), Decimal("0")
        )

        return summary

    def _require_transactions(self) -> None:
        if self.transaction_index is None:
            logger.error("Transactions not loaded")
            raise DataNotLoadedError(
                "data not loaded: call load_transactions() before matching"
            )

    def _require_statements(self) -> None:
        if self.statement_index is None:
            logger.error("Bank statements not loaded")
            raise DataNotLoadedError(
                "data not loaded: call load_statements() before matching"
            )

    def validate_configuration(self) -> None:
        self._config.validate()

    def update_configuration(self, config: MatchingConfig) -> None:
        """
        Replace the configuration with a validated copy.

        Raises:
            ConfigurationError: If the new configuration is invalid; the old one is kept.
        """
        self._config = config.clone()
        logger.info("Updated matching configuration: %s", self._config)

    def stats(self) -> Tuple[IndexStats, IndexStats]:
        """Index statistics for the transaction and statement sides."""
        txn_stats = self.transaction_index.stats() if self.transaction_index else IndexStats()
        stmt_stats = self.statement_index.stats() if self.statement_index else IndexStats()
        return txn_stats, stmt_stats


def _require_unique_ids(records: Sequence, label: str) -> None:
    """Claims are tracked by id, so each id may appear only once per side."""
    seen: Set[str] = set()
    for record in records:
        if record is None:
            continue
        if record.id in seen:
            raise PreconditionError(f"duplicate {label} id {record.id!r}")
        seen.add(record.id)
