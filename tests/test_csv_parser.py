"""Tests for the CSV parser."""

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pandas as pd

from ledgermatch.parsers.csv_parser import CSVParser
from ledgermatch.engine.models import TransactionType

TODAY = date(2025, 2, 1)


@pytest.fixture
def transactions_csv(tmp_path) -> Path:
    """Create a system transactions export."""
    csv_content = """trxID,amount,type,transactionTime
TX001,1000.00,credit,2025-01-10 09:15:00
TX002,500.00,DEBIT,2025-01-15 14:30:00
TX003,-150.00,,2025-01-25 08:00:00
TX004,2500.00,cr,2025-01-20T16:45:00
"""
    csv_file = tmp_path / "transactions.csv"
    csv_file.write_text(csv_content)
    return csv_file


@pytest.fixture
def statements_csv(tmp_path) -> Path:
    """Create a bank statement export."""
    csv_content = """unique_identifier,amount,date
BS001,1000.00,2025-01-10
BS002,-500.00,2025-01-15
BS003,"1.234,56",2025-01-20
"""
    csv_file = tmp_path / "statements.csv"
    csv_file.write_text(csv_content)
    return csv_file


@pytest.fixture
def brazilian_csv(tmp_path) -> Path:
    """Create a CSV with Brazilian date/number format."""
    csv_content = """Ref,Valor,Data
REF001,"1.000,50",10/01/2025
REF002,"-500,00",15/01/2025
REF003,"R$ 2.500,00",20/01/2025
"""
    csv_file = tmp_path / "test_br.csv"
    csv_file.write_text(csv_content)
    return csv_file


class TestParseTransactions:
    """Test system transaction parsing."""

    def test_parse_standard_csv(self, transactions_csv):
        parser = CSVParser()
        transactions = parser.parse_transactions(transactions_csv)

        assert [t.id for t in transactions] == ["TX001", "TX002", "TX003", "TX004"]
        assert transactions[0].amount == Decimal("1000.00")
        assert transactions[0].type == TransactionType.CREDIT
        assert transactions[0].occurred_at == datetime(2025, 1, 10, 9, 15)

    def test_type_column_is_case_insensitive(self, transactions_csv):
        transactions = CSVParser().parse_transactions(transactions_csv)
        assert transactions[1].type == TransactionType.DEBIT
        assert transactions[3].type == TransactionType.CREDIT

    def test_missing_type_follows_sign(self, transactions_csv):
        txn = CSVParser().parse_transactions(transactions_csv)[2]
        assert txn.type == TransactionType.DEBIT
        assert txn.amount == Decimal("150.00")

    def test_column_aliases(self, tmp_path):
        csv_file = tmp_path / "aliases.csv"
        csv_file.write_text(
            "transaction_id,amount,timestamp\n"
            "A1,12.50,2025-01-10 10:00:00\n"
        )
        transactions = CSVParser().parse_transactions(csv_file)
        assert transactions[0].id == "A1"
        assert transactions[0].type == TransactionType.CREDIT

    def test_custom_column_mapping(self, brazilian_csv):
        parser = CSVParser(column_mapping={"id": "Ref", "amount": "Valor", "time": "Data"})
        transactions = parser.parse_transactions(brazilian_csv)

        assert len(transactions) == 3
        assert transactions[0].amount == Decimal("1000.50")
        assert transactions[1].type == TransactionType.DEBIT
        assert transactions[2].amount == Decimal("2500.00")
        assert transactions[0].occurred_at == datetime(2025, 1, 10)

    def test_iso_offset_timestamp(self, tmp_path):
        csv_file = tmp_path / "offset.csv"
        csv_file.write_text("trxID,amount,transactionTime\nT1,10.00,2025-01-10T23:30:00-0300\n")
        txn = CSVParser().parse_transactions(csv_file)[0]
        assert txn.timestamp.astimezone(timezone.utc) == datetime(2025, 1, 11, 2, 30, tzinfo=timezone.utc)

    def test_invalid_rows_skipped(self, tmp_path, caplog):
        csv_file = tmp_path / "bad.csv"
        csv_file.write_text(
            "trxID,amount,type,transactionTime\n"
            "T1,10.00,credit,2025-01-10 10:00:00\n"
            "T2,0.00,credit,2025-01-10 10:00:00\n"
            "T3,abc,credit,2025-01-10 10:00:00\n"
            "T4,10.00,sideways,2025-01-10 10:00:00\n"
            "T5,10.00,credit,not a date\n"
            ",10.00,credit,2025-01-10 10:00:00\n"
            "T6,20.00,debit,2025-01-11 10:00:00\n"
        )
        transactions = CSVParser().parse_transactions(csv_file)

        assert [t.id for t in transactions] == ["T1", "T6"]
        assert "Skipping row" in caplog.text

    def test_duplicate_ids_keep_first(self, tmp_path):
        csv_file = tmp_path / "dupes.csv"
        csv_file.write_text(
            "trxID,amount,transactionTime\n"
            "T1,10.00,2025-01-10 10:00:00\n"
            "T1,99.00,2025-01-11 10:00:00\n"
        )
        transactions = CSVParser().parse_transactions(csv_file)
        assert len(transactions) == 1
        assert transactions[0].amount == Decimal("10.00")

    def test_missing_columns_raises(self, tmp_path):
        csv_file = tmp_path / "bad_columns.csv"
        csv_file.write_text("foo,bar\n1,2\n")

        parser = CSVParser()
        with pytest.raises(ValueError, match="Missing required columns"):
            parser.parse_transactions(csv_file)

    def test_parse_excel(self, tmp_path):
        df = pd.DataFrame({
            "trxID": ["T1", "T2"],
            "amount": ["1000.00", "500.00"],
            "type": ["credit", "debit"],
            "transactionTime": ["2025-01-10 09:00:00", "2025-01-15 12:00:00"],
        })
        excel_file = tmp_path / "test.xlsx"
        df.to_excel(excel_file, index=False)

        transactions = CSVParser().parse_transactions(excel_file)
        assert len(transactions) == 2
        assert transactions[1].type == TransactionType.DEBIT

    def test_file_not_found(self):
        parser = CSVParser()
        with pytest.raises(FileNotFoundError):
            parser.parse_transactions("/nonexistent/file.csv")

    def test_unsupported_format(self, tmp_path):
        txt_file = tmp_path / "test.txt"
        txt_file.write_text("some data")

        parser = CSVParser()
        with pytest.raises(ValueError, match="Unsupported"):
            parser.parse_transactions(txt_file)


class TestParseStatements:
    """Test bank statement parsing."""

    def test_parse_statements(self, statements_csv):
        statements = CSVParser().parse_statements(statements_csv, today=TODAY)

        assert [s.id for s in statements] == ["BS001", "BS002", "BS003"]
        assert statements[1].amount == Decimal("-500.00")
        assert statements[1].type == TransactionType.DEBIT
        assert statements[2].amount == Decimal("1234.56")
        assert statements[0].posted_on == date(2025, 1, 10)

    def test_reference_alias(self, tmp_path):
        csv_file = tmp_path / "ref.csv"
        csv_file.write_text("reference,amount,date\nR1,-20.00,2025-01-10\n")
        statements = CSVParser().parse_statements(csv_file, today=TODAY)
        assert statements[0].id == "R1"

    def test_future_and_stale_dates_skipped(self, tmp_path):
        csv_file = tmp_path / "window.csv"
        csv_file.write_text(
            "unique_identifier,amount,date\n"
            "S1,10.00,2025-02-02\n"
            "S2,10.00,2025-02-03\n"
            "S3,10.00,2014-01-01\n"
        )
        statements = CSVParser().parse_statements(csv_file, today=TODAY)
        assert [s.id for s in statements] == ["S1"]

    def test_missing_columns_raises(self, transactions_csv):
        with pytest.raises(ValueError, match="statement_id"):
            CSVParser().parse_statements(transactions_csv)
