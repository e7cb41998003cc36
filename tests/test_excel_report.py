"""Tests for the Excel report generator."""

from datetime import datetime
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from ledgermatch.engine.edge_cases import EdgeCaseResolver
from ledgermatch.engine.matcher import MatchingEngine
from ledgermatch.engine.models import BankStatementEntry, Transaction, TransactionType
from ledgermatch.reports.excel_report import ExcelReportGenerator


def make_txn(id: str, when: str, amount: str, type: str = "credit") -> Transaction:
    """Helper to create test transactions."""
    return Transaction(
        id=id,
        amount=Decimal(amount),
        type=TransactionType(type),
        occurred_at=datetime.strptime(when, "%Y-%m-%d %H:%M"),
    )


def make_stmt(id: str, posted: str, amount: str) -> BankStatementEntry:
    return BankStatementEntry(
        id=id,
        amount=Decimal(amount),
        posted_on=datetime.strptime(posted, "%Y-%m-%d").date(),
    )


@pytest.fixture
def sample_transactions():
    return [
        make_txn("T1", "2025-01-10 09:00", "1000.00"),
        make_txn("T2", "2025-01-15 10:00", "200.00", "debit"),
        make_txn("T3", "2025-01-25 11:00", "750.00"),
        make_txn("T4", "2025-01-25 11:20", "750.00"),
    ]


@pytest.fixture
def sample_result(sample_transactions):
    """Reconcile a small data set with one leftover on each side."""
    engine = MatchingEngine()
    engine.load_transactions(sample_transactions)
    engine.load_statements([
        make_stmt("S1", "2025-01-10", "1000.00"),
        make_stmt("S2", "2025-01-15", "-200.00"),
        make_stmt("S3", "2025-01-25", "750.00"),
        make_stmt("S4", "2025-01-20", "-42.00"),
    ])
    return engine.reconcile()


@pytest.fixture
def duplicates(sample_transactions):
    return EdgeCaseResolver().detect_duplicates(sample_transactions)


class TestExcelReportGenerator:
    """Test Excel report generation functionality."""

    def test_generate_creates_file(self, tmp_path, sample_result):
        output = tmp_path / "reports" / "test_report.xlsx"
        result_path = ExcelReportGenerator().generate(sample_result, output)

        assert result_path.exists()
        assert result_path.suffix == ".xlsx"

    def test_report_has_five_tabs(self, tmp_path, sample_result):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output)

        wb = load_workbook(output)
        assert wb.sheetnames == [
            "Summary", "Matched", "Unmatched Transactions", "Unmatched Statements", "Duplicates",
        ]

    def test_summary_tab_has_kpis(self, tmp_path, sample_result):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output)

        ws = load_workbook(output)["Summary"]
        assert ws["A1"].value == "Reconciliation Report"

        kpis = {ws[f"A{row}"].value: ws[f"B{row}"].value for row in range(5, 16)}
        assert kpis["Match Rate"] == "75.0%"
        assert kpis["Matched"] == 3
        assert kpis["Exact Matches"] == 3
        assert kpis["Unmatched Transactions"] == 1
        assert kpis["Unmatched Statements"] == 1

    def test_matched_tab_has_data(self, tmp_path, sample_result):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output)

        ws = load_workbook(output)["Matched"]
        assert ws["A1"].value == "Transaction ID"
        assert ws["E1"].value == "Statement ID"
        assert ws.freeze_panes == "A2"

        assert [ws[f"A{row}"].value for row in range(2, 5)] == ["T1", "T2", "T3"]
        assert ws["H3"].value == -200.0
        assert ws["H3"].number_format == "#,##0.00"
        assert ws["I2"].value == "exact"
        assert ws["A5"].value is None

    def test_unmatched_tabs(self, tmp_path, sample_result):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output)

        wb = load_workbook(output)
        transactions = wb["Unmatched Transactions"]
        assert transactions["A2"].value == "T4"
        assert transactions["A3"].value is None

        statements = wb["Unmatched Statements"]
        assert statements["A2"].value == "S4"
        assert statements["B2"].value == "2025-01-20"
        assert statements["C2"].value == "debit"

    def test_duplicates_tab(self, tmp_path, sample_result, duplicates):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output, duplicates)

        wb = load_workbook(output)
        ws = wb["Duplicates"]
        assert [ws[f"C{row}"].value for row in (2, 3)] == ["T3", "T4"]
        assert ws["A2"].value == "DUP_T3"

        kpis = {wb["Summary"][f"A{row}"].value: wb["Summary"][f"B{row}"].value for row in range(5, 16)}
        assert kpis["Duplicate Groups"] == 1

    def test_empty_duplicates_tab(self, tmp_path, sample_result):
        output = tmp_path / "test_report.xlsx"
        ExcelReportGenerator().generate(sample_result, output)

        ws = load_workbook(output)["Duplicates"]
        assert ws["A1"].value == "Group"
        assert ws["A2"].value is None
