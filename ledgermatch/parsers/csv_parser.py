"""CSV/Excel parser for system transactions and bank statement exports."""

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, List, Optional, TypeVar

import pandas as pd

from ledgermatch.engine.errors import RecordError
from ledgermatch.engine.models import BankStatementEntry, Transaction, TransactionType

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", Transaction, BankStatementEntry)


class CSVParser:
    """Parse CSV/Excel exports into Transaction and BankStatementEntry objects."""

    # Default column mapping
    DEFAULT_MAPPING: Dict[str, str] = {
        "id": "trxID",
        "amount": "amount",
        "type": "type",
        "time": "transactionTime",
        "statement_id": "unique_identifier",
        "date": "date",
    }

    # Alternative header names recognised when the mapped column is absent
    COLUMN_ALIASES: Dict[str, List[str]] = {
        "id": ["id", "tx_id", "txn_id", "transaction_id"],
        "amount": ["amt", "value", "sum"],
        "type": ["transaction_type", "tx_type", "debit_credit"],
        "time": ["time", "datetime", "timestamp", "date"],
        "statement_id": [
            "id", "identifier", "ref", "reference", "transaction_id", "statement_id",
        ],
        "date": ["transaction_date", "statement_date", "posting_date", "value_date"],
    }

    # Common date formats to try
    DATE_FORMATS = [
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d",
        "%d/%m/%Y %H:%M:%S",
        "%d/%m/%Y",
        "%m/%d/%Y",
        "%d-%m-%Y",
        "%Y/%m/%d",
        "%d.%m.%Y",
        "%b %d, %Y",
        "%B %d, %Y",
    ]

    def __init__(self, column_mapping: Optional[Dict[str, str]] = None):
        """
        Initialize parser with optional custom column mapping.

        Args:
            column_mapping: Dict mapping our field names to file column names.
                          Example: {"id": "Ref", "amount": "Valor"}
        """
        self.column_mapping = {**self.DEFAULT_MAPPING, **(column_mapping or {})}

    def parse_transactions(self, file_path: str | Path, **kwargs) -> List[Transaction]:
        """
        Parse a system transaction export.

        Expects id, amount and time columns; type is optional and falls back
        to the amount's sign. Amounts are stored as positive magnitudes.

        Args:
            file_path: Path to the CSV/Excel file.
            **kwargs: Additional arguments passed to pandas read function.

        Returns:
            Valid transactions in file order. Invalid rows are logged and skipped.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If required columns are missing.
        """
        df = self._load(file_path, ["id", "amount", "time"], **kwargs)
        return self._convert_dataframe(df, self._convert_transaction)

    def parse_statements(
        self, file_path: str | Path, today: Optional[date] = None, **kwargs
    ) -> List[BankStatementEntry]:
        """
        Parse a bank statement export with identifier, signed amount and date columns.

        Args:
            file_path: Path to the CSV/Excel file.
            today: Reference date for the posting window check.
            **kwargs: Additional arguments passed to pandas read function.

        Returns:
            Valid statement entries in file order. Invalid rows are logged and skipped.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If required columns are missing.
        """
        df = self._load(file_path, ["statement_id", "amount", "date"], **kwargs)
        return self._convert_dataframe(
            df, lambda row, idx: self._convert_statement(row, idx, today)
        )

    def _load(self, file_path: str | Path, required: List[str], **kwargs) -> pd.DataFrame:
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        df = self._read_file(file_path, **kwargs)
        self._resolve_columns(df, required)
        return df

    def _read_file(self, file_path: Path, **kwargs) -> pd.DataFrame:
        """Read file based on extension. Everything is read as text to keep amounts exact."""
        suffix = file_path.suffix.lower()
        kwargs.setdefault("dtype", str)

        if suffix == ".csv":
            return pd.read_csv(file_path, **kwargs)
        elif suffix in (".xlsx", ".xls"):
            return pd.read_excel(file_path, **kwargs)
        else:
            raise ValueError(f"Unsupported file format: {suffix}. Use .csv, .xlsx, or .xls")

    def _resolve_columns(self, df: pd.DataFrame, required: List[str]) -> None:
        """
        Map each required field to a column, falling back to known aliases.

        Raises:
            ValueError: If required columns are missing.
        """
        lowered = {str(col).strip().lower(): col for col in df.columns}
        self._columns: Dict[str, str] = {}
        missing = []

        for field in list(self.column_mapping):
            col_name = self.column_mapping[field]
            if col_name in df.columns:
                self._columns[field] = col_name
                continue
            for alias in [col_name.lower()] + self.COLUMN_ALIASES.get(field, []):
                if alias in lowered:
                    self._columns[field] = lowered[alias]
                    break
            else:
                if field in required:
                    missing.append(f"{field} (expected column: '{col_name}')")

        if missing:
            available = ", ".join(str(c) for c in df.columns)
            raise ValueError(
                f"Missing required columns: {', '.join(missing)}. "
                f"Available columns: {available}. "
                f"Use column_mapping parameter to map your columns."
            )

    def _convert_dataframe(
        self, df: pd.DataFrame, convert: Callable[[pd.Series, int], RecordT]
    ) -> List[RecordT]:
        """Convert rows, dropping invalid ones and repeated ids."""
        records: List[RecordT] = []
        seen_ids = set()

        for idx, row in df.iterrows():
            try:
                record = convert(row, idx)
            except (ValueError, InvalidOperation) as e:
                # RecordError is a ValueError too
                logger.warning("Skipping row %s: %s", idx, e)
                continue

            if record.id in seen_ids:
                logger.warning("Skipping row %s: duplicate id %r", idx, record.id)
                continue
            seen_ids.add(record.id)
            records.append(record)

        logger.info("Parsed %d records from %d rows", len(records), len(df))
        return records

    def _value(self, row: pd.Series, field: str) -> Optional[str]:
        col = self._columns.get(field)
        if col is None:
            return None
        value = row.get(col)
        if value is None or pd.isna(value):
            return None
        return str(value).strip()

    def _required(self, row: pd.Series, field: str) -> str:
        value = self._value(row, field)
        if not value:
            raise RecordError(f"missing value for {field}")
        return value

    def _convert_transaction(self, row: pd.Series, idx: int) -> Transaction:
        """Convert a single row to a Transaction."""
        amount = self._parse_amount(self._required(row, "amount"))

        type_value = self._value(row, "type")
        if type_value:
            txn_type = self._parse_type(type_value)
        else:
            txn_type = TransactionType.from_amount(amount)

        txn = Transaction(
            id=self._required(row, "id"),
            amount=abs(amount),
            type=txn_type,
            occurred_at=self._parse_datetime(self._required(row, "time")),
        )
        txn.validate()
        return txn

    def _convert_statement(
        self, row: pd.Series, idx: int, today: Optional[date]
    ) -> BankStatementEntry:
        """Convert a single row to a BankStatementEntry."""
        stmt = BankStatementEntry(
            id=self._required(row, "statement_id"),
            amount=self._parse_amount(self._required(row, "amount")),
            posted_on=self._parse_datetime(self._required(row, "date")).date(),
        )
        stmt.validate(today=today)
        return stmt

    def _parse_datetime(self, value: str) -> datetime:
        """Parse date or timestamp from various formats."""
        for fmt in self.DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue

        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"Could not parse date: {value!r}") from None

    def _parse_amount(self, value: str) -> Decimal:
        """Parse amount handling various number formats."""
        str_value = value.replace("R$", "").replace("$", "").replace(" ", "")

        # Handle decimal-comma format: 1.234,56
        if "," in str_value and "." in str_value:
            if str_value.rindex(",") > str_value.rindex("."):
                str_value = str_value.replace(".", "").replace(",", ".")
            else:
                str_value = str_value.replace(",", "")

        # Handle comma as decimal separator: 1234,56
        elif "," in str_value:
            str_value = str_value.replace(",", ".")

        return Decimal(str_value)

    def _parse_type(self, value: str) -> TransactionType:
        """Parse transaction type from string."""
        normalized = value.lower().strip()
        credit_words = {"credit", "crédito", "credito", "c", "cr", "entrada", "receipt"}
        debit_words = {"debit", "débito", "debito", "d", "dr", "saída", "saida", "payment"}

        if normalized in credit_words:
            return TransactionType.CREDIT
        elif normalized in debit_words:
            return TransactionType.DEBIT
        else:
            raise ValueError(f"Unknown transaction type: {value!r}")
