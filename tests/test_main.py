"""Tests for the command-line entry point."""

import json
import re
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from click.testing import CliRunner
from openpyxl import load_workbook

from ledgermatch.engine.config import MatchingConfig
from ledgermatch.engine.errors import ConfigurationError
from ledgermatch.engine.matcher import MatchingEngine
from ledgermatch.main import build_config, filter_by_date_range, load_statements, main
from ledgermatch.parsers.csv_parser import CSVParser

FIXTURES_DIR = Path(__file__).parent / "fixtures"

DAY = date.today() - timedelta(days=7)


def write_transactions(path: Path, rows) -> Path:
    lines = ["trxID,amount,type,transactionTime"]
    lines += [f"{id},{amount},{type},{DAY.isoformat()} {time}" for id, amount, type, time in rows]
    path.write_text("\n".join(lines) + "\n")
    return path


def write_statements(path: Path, rows) -> Path:
    lines = ["unique_identifier,amount,date"]
    lines += [f"{id},{amount},{DAY.isoformat()}" for id, amount in rows]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def transactions_csv(tmp_path) -> Path:
    return write_transactions(tmp_path / "transactions.csv", [
        ("T1", "100.00", "credit", "09:00:00"),
        ("T2", "250.00", "debit", "10:00:00"),
        ("T3", "75.00", "credit", "11:00:00"),
        ("T4", "75.00", "credit", "11:05:00"),
    ])


@pytest.fixture
def statements_csv(tmp_path) -> Path:
    return write_statements(tmp_path / "statements.csv", [
        ("S1", "100.00"),
        ("S2", "-250.00"),
        ("S3", "75.00"),
    ])


class TestMain:

    def test_reconcile_and_report(self, tmp_path, transactions_csv, statements_csv):
        output = tmp_path / "report.xlsx"
        runner = CliRunner()
        result = runner.invoke(main, [
            "--transactions", str(transactions_csv),
            "--statements", str(statements_csv),
            "--output", str(output),
        ])

        assert result.exit_code == 0, result.output
        assert re.search(r"Match Rate:\s+75\.0%", result.output)
        assert re.search(r"Unmatched Transactions:\s+1\n", result.output)
        assert output.exists()
        assert load_workbook(output)["Unmatched Transactions"]["A2"].value == "T4"

    def test_without_output(self, transactions_csv, statements_csv):
        result = CliRunner().invoke(main, [
            "-t", str(transactions_csv), "-s", str(statements_csv),
        ])
        assert result.exit_code == 0, result.output
        assert "Report saved" not in result.output

    def test_ofx_statements(self, tmp_path):
        transactions = tmp_path / "transactions.csv"
        transactions.write_text(
            "trxID,amount,type,transactionTime\n"
            "T1,1500.00,credit,2025-01-10 09:00:00\n"
            "T2,200.00,debit,2025-01-15 16:00:00\n"
        )
        result = CliRunner().invoke(main, [
            "-t", str(transactions), "-s", str(FIXTURES_DIR / "sample.ofx"),
        ])
        assert result.exit_code == 0, result.output
        assert "Found 3 statement entries" in result.output
        assert re.search(r"Matched:\s+2\n", result.output)

    def test_detect_duplicates(self, transactions_csv, statements_csv):
        result = CliRunner().invoke(main, [
            "-t", str(transactions_csv), "-s", str(statements_csv), "--detect-duplicates",
        ])
        assert result.exit_code == 0, result.output
        assert re.search(r"Duplicate Groups:\s+1\n", result.output)

    def test_partial_matches(self, tmp_path):
        transactions = write_transactions(tmp_path / "t.csv", [("T1", "100.00", "credit", "09:00:00")])
        statements = write_statements(tmp_path / "s.csv", [("S1", "60.00"), ("S2", "40.00")])

        result = CliRunner().invoke(main, ["-t", str(transactions), "-s", str(statements), "--partial"])

        assert result.exit_code == 0, result.output
        assert "T1 <- S1, S2" in result.output

    def test_missing_file(self, tmp_path, statements_csv):
        result = CliRunner().invoke(main, [
            "-t", str(tmp_path / "missing.csv"), "-s", str(statements_csv),
        ])
        assert result.exit_code == 1
        assert "ERROR" in result.output

    def test_invalid_option_value(self, transactions_csv, statements_csv):
        result = CliRunner().invoke(main, [
            "-t", str(transactions_csv), "-s", str(statements_csv), "--min-confidence", "1.5",
        ])
        assert result.exit_code == ConfigurationError.exit_code
        assert "minimum confidence" in result.output

    def test_no_transactions(self, tmp_path, statements_csv):
        empty = write_transactions(tmp_path / "empty.csv", [])
        result = CliRunner().invoke(main, ["-t", str(empty), "-s", str(statements_csv)])
        assert result.exit_code == 3
        assert "precondition" in result.output

    def test_missing_columns(self, tmp_path, statements_csv):
        bad = tmp_path / "bad.csv"
        bad.write_text("foo,bar\n1,2\n")
        result = CliRunner().invoke(main, ["-t", str(bad), "-s", str(statements_csv)])
        assert result.exit_code == 1
        assert "Missing required columns" in result.output


class TestLoadStatements:

    def test_id_repeated_across_files_keeps_first(self, tmp_path, caplog):
        january = write_statements(tmp_path / "january.csv", [("1", "100.00"), ("2", "30.00")])
        february = write_statements(tmp_path / "february.csv", [("1", "-250.00"), ("3", "45.00")])

        entries = load_statements([str(january), str(february)], CSVParser())

        assert [e.id for e in entries] == ["1", "2", "3"]
        assert entries[0].amount == Decimal("100.00")
        assert "duplicate id" in caplog.text

    def test_summary_stays_consistent_across_files(self, tmp_path):
        january = write_statements(tmp_path / "january.csv", [("1", "100.00")])
        february = write_statements(tmp_path / "february.csv", [("1", "100.00")])
        transactions = CSVParser().parse_transactions(write_transactions(tmp_path / "t.csv", [
            ("T1", "100.00", "credit", "09:00:00"),
            ("T2", "100.00", "credit", "09:30:00"),
        ]))

        engine = MatchingEngine()
        engine.load_transactions(transactions)
        engine.load_statements(load_statements([str(january), str(february)], CSVParser()))
        summary = engine.reconcile().summary

        assert summary.total_statements == 1
        assert summary.matched_transactions == 1
        assert summary.unmatched_statements == 0
        assert summary.is_consistent()


class TestDateRange:

    @pytest.fixture
    def spread(self, tmp_path):
        """One transaction and one statement entry on each of three days."""
        days = [DAY - timedelta(days=2), DAY - timedelta(days=1), DAY]
        transactions = tmp_path / "transactions.csv"
        transactions.write_text("trxID,amount,type,transactionTime\n" + "".join(
            f"T{i},{10 * (i + 1)}.00,credit,{day.isoformat()} 23:30:00\n" for i, day in enumerate(days)
        ))
        statements = tmp_path / "statements.csv"
        statements.write_text("unique_identifier,amount,date\n" + "".join(
            f"S{i},{10 * (i + 1)}.00,{day.isoformat()}\n" for i, day in enumerate(days)
        ))
        return transactions, statements, days

    def test_filter_is_inclusive(self, spread):
        transactions, statements, days = spread
        parser = CSVParser()

        txns, entries = filter_by_date_range(
            parser.parse_transactions(transactions),
            parser.parse_statements(statements),
            start=days[1],
            end=days[2],
        )
        assert [t.id for t in txns] == ["T1", "T2"]
        assert [s.id for s in entries] == ["S1", "S2"]

    def test_open_bounds(self, spread):
        transactions, statements, days = spread
        parser = CSVParser()
        txns = parser.parse_transactions(transactions)
        entries = parser.parse_statements(statements)

        assert [t.id for t in filter_by_date_range(txns, entries, end=days[0])[0]] == ["T0"]
        assert [s.id for s in filter_by_date_range(txns, entries, start=days[2])[1]] == ["S2"]

    def test_start_after_end_rejected(self):
        with pytest.raises(ConfigurationError, match="after end date"):
            filter_by_date_range([], [], start=DAY, end=DAY - timedelta(days=1))

    def test_cli_date_range(self, spread):
        transactions, statements, days = spread
        result = CliRunner().invoke(main, [
            "-t", str(transactions), "-s", str(statements),
            "--start-date", days[1].isoformat(), "--end-date", days[1].isoformat(),
        ])
        assert result.exit_code == 0, result.output
        assert "Kept 1 transactions and 1 statement entries in range" in result.output
        assert re.search(r"Matched:\s+1\n", result.output)
        assert re.search(r"Unmatched Statements:\s+0\n", result.output)

    def test_cli_bad_date(self, transactions_csv, statements_csv):
        result = CliRunner().invoke(main, [
            "-t", str(transactions_csv), "-s", str(statements_csv), "--start-date", "01/02/2025",
        ])
        assert result.exit_code == 2
        assert "--start-date" in result.output

class TestBuildConfig:

    def test_preset_only(self):
        assert build_config("strict") == MatchingConfig.strict()

    def test_file_then_overrides(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "date_tolerance_days": 2,
            "min_confidence_score": 0.7,
            "weights": {"amount": 0.5, "date": 0.4, "type": 0.1},
        }))

        config = build_config("default", str(config_file), {
            "date_tolerance_days": 5, "amount_tolerance_percent": None,
        })
        assert config.date_tolerance_days == 5
        assert config.min_confidence_score == 0.7
        assert config.weights.date == 0.4
        assert config.amount_tolerance_percent == 0.0

    def test_unknown_key_in_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"speed": "fast"}))
        with pytest.raises(ConfigurationError, match="unknown configuration keys"):
            build_config("default", str(config_file))

    def test_unreadable_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")
        with pytest.raises(ConfigurationError, match="cannot read config file"):
            build_config("default", str(config_file))

    def test_config_file_via_cli(self, tmp_path, transactions_csv, statements_csv):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"max_candidates_per_transaction": 0}))
        result = CliRunner().invoke(main, [
            "-t", str(transactions_csv), "-s", str(statements_csv), "--config", str(config_file),
        ])
        assert result.exit_code == 4
        assert "max candidates" in result.output
