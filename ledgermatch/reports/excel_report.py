"""Excel report generator for reconciliation results."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from ledgermatch.engine.edge_cases import DuplicateGroup
from ledgermatch.engine.models import (
    BankStatementEntry,
    MatchResult,
    ReconciliationResult,
    ReconciliationSummary,
    Transaction,
)

logger = logging.getLogger(__name__)

AMOUNT_FORMAT = "#,##0.00"


class ExcelReportGenerator:
    """Write a reconciliation result to a styled Excel workbook."""

    # Style constants
    HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
    HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
    MATCHED_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    DUPLICATE_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
    TITLE_FONT = Font(name="Calibri", size=16, bold=True, color="1F4E79")
    SUBTITLE_FONT = Font(name="Calibri", size=12, bold=True, color="1F4E79")
    KPI_FONT = Font(name="Calibri", size=14, bold=True)
    THIN_BORDER = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )

    TRANSACTION_HEADERS = ["Transaction ID", "Time", "Type", "Amount"]
    STATEMENT_HEADERS = ["Statement ID", "Posted", "Type", "Amount"]

    def generate(
        self,
        result: ReconciliationResult,
        output_path: str | Path,
        duplicates: Sequence[DuplicateGroup] = (),
    ) -> Path:
        """
        Generate Excel report with 5 tabs.

        Args:
            result: Outcome of MatchingEngine.reconcile().
            output_path: Path for the output Excel file.
            duplicates: Duplicate groups to list, if detection was run.

        Returns:
            Path to the generated report.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        wb = Workbook()

        self._create_summary_tab(wb, result.summary, len(duplicates))
        self._create_matched_tab(wb, result.matches)
        self._create_transactions_tab(wb, result.unmatched_transactions)
        self._create_statements_tab(wb, result.unmatched_statements)
        self._create_duplicates_tab(wb, duplicates)

        wb.save(str(output_path))
        logger.info("Wrote reconciliation report to %s", output_path)
        return output_path

    def _create_summary_tab(
        self, wb: Workbook, summary: ReconciliationSummary, duplicate_groups: int
    ) -> None:
        """Create the Summary dashboard tab."""
        ws = wb.active
        ws.title = "Summary"
        ws.sheet_properties.tabColor = "1F4E79"

        ws.merge_cells("A1:F1")
        ws["A1"] = "Reconciliation Report"
        ws["A1"].font = self.TITLE_FONT
        ws["A1"].alignment = Alignment(horizontal="center")

        ws.merge_cells("A2:F2")
        ws["A2"] = f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        ws["A2"].alignment = Alignment(horizontal="center")

        kpis = [
            ("Match Rate", f"{summary.match_rate:.1f}%"),
            ("Total Transactions", summary.total_transactions),
            ("Total Statements", summary.total_statements),
            ("Matched", summary.matched_transactions),
            ("Exact Matches", summary.exact_matches),
            ("Close Matches", summary.close_matches),
            ("Fuzzy Matches", summary.fuzzy_matches),
            ("Possible Matches", summary.possible_matches),
            ("Unmatched Transactions", summary.unmatched_transactions),
            ("Unmatched Statements", summary.unmatched_statements),
            ("Duplicate Groups", duplicate_groups),
        ]

        ws["A4"] = "Key Performance Indicators"
        ws["A4"].font = self.SUBTITLE_FONT

        for i, (label, value) in enumerate(kpis, start=5):
            ws[f"A{i}"] = label
            ws[f"A{i}"].font = Font(bold=True)
            ws[f"B{i}"] = value
            ws[f"B{i}"].font = self.KPI_FONT

            if label.startswith("Unmatched") and value > 0:
                ws[f"B{i}"].fill = self.UNMATCHED_FILL
            elif label == "Match Rate":
                ws[f"B{i}"].fill = (
                    self.MATCHED_FILL if summary.match_rate >= 95 else self.UNMATCHED_FILL
                )

        row = len(kpis) + 7
        ws[f"A{row}"] = "Amount Summary"
        ws[f"A{row}"].font = self.SUBTITLE_FONT
        row += 1

        for label, amount in (
            ("Matched Amount", summary.total_amount_matched),
            ("Unmatched Amount", summary.total_amount_unmatched),
        ):
            ws[f"A{row}"] = label
            ws[f"A{row}"].font = Font(bold=True)
            ws[f"B{row}"] = float(amount)
            ws[f"B{row}"].number_format = AMOUNT_FORMAT
            row += 1

        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 20

    def _create_matched_tab(self, wb: Workbook, matches: List[MatchResult]) -> None:
        """Create the Matched tab, one row per assigned pair."""
        ws = wb.create_sheet("Matched")
        ws.sheet_properties.tabColor = "00B050"

        headers = self.TRANSACTION_HEADERS + self.STATEMENT_HEADERS + [
            "Match Type", "Confidence", "Date Diff (days)", "Amount Diff", "Reasons",
        ]
        self._write_headers(ws, headers)

        for row, match in enumerate(matches, start=2):
            values = (
                self._transaction_cells(match.transaction)
                + self._statement_cells(match.statement)
                + [
                    match.match_type.value,
                    round(match.confidence, 4),
                    round(match.date_difference.total_seconds() / 86400, 2),
                    float(match.amount_difference),
                    "; ".join(match.reasons),
                ]
            )
            self._write_row(ws, row, values, self.MATCHED_FILL)
            ws.cell(row=row, column=4).number_format = AMOUNT_FORMAT
            ws.cell(row=row, column=8).number_format = AMOUNT_FORMAT
            ws.cell(row=row, column=12).number_format = AMOUNT_FORMAT

        self._auto_width(ws, headers)

    def _create_transactions_tab(self, wb: Workbook, transactions: List[Transaction]) -> None:
        """Create the Unmatched Transactions tab."""
        ws = wb.create_sheet("Unmatched Transactions")
        ws.sheet_properties.tabColor = "FF0000"

        self._write_headers(ws, self.TRANSACTION_HEADERS)
        for row, txn in enumerate(transactions, start=2):
            self._write_row(ws, row, self._transaction_cells(txn), self.UNMATCHED_FILL)
            ws.cell(row=row, column=4).number_format = AMOUNT_FORMAT

        self._auto_width(ws, self.TRANSACTION_HEADERS)

    def _create_statements_tab(self, wb: Workbook, statements: List[BankStatementEntry]) -> None:
        """Create the Unmatched Statements tab."""
        ws = wb.create_sheet("Unmatched Statements")
        ws.sheet_properties.tabColor = "FF0000"

        self._write_headers(ws, self.STATEMENT_HEADERS)
        for row, stmt in enumerate(statements, start=2):
            self._write_row(ws, row, self._statement_cells(stmt), self.UNMATCHED_FILL)
            ws.cell(row=row, column=4).number_format = AMOUNT_FORMAT

        self._auto_width(ws, self.STATEMENT_HEADERS)

    def _create_duplicates_tab(self, wb: Workbook, groups: Sequence[DuplicateGroup]) -> None:
        """Create the Duplicates tab, one row per group member."""
        ws = wb.create_sheet("Duplicates")
        ws.sheet_properties.tabColor = "FFC000"

        headers = ["Group", "Confidence"] + self.TRANSACTION_HEADERS
        self._write_headers(ws, headers)

        row = 2
        for group in groups:
            for txn in group.transactions:
                values = [group.group_id, round(group.confidence, 4)] + self._transaction_cells(txn)
                self._write_row(ws, row, values, self.DUPLICATE_FILL)
                ws.cell(row=row, column=6).number_format = AMOUNT_FORMAT
                row += 1

        self._auto_width(ws, headers)

    def _transaction_cells(self, txn: Transaction) -> list:
        return [
            txn.id,
            txn.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            txn.type.value,
            float(txn.amount),
        ]

    def _statement_cells(self, stmt: BankStatementEntry) -> list:
        return [
            stmt.id,
            stmt.posted_on.strftime("%Y-%m-%d"),
            stmt.type.value,
            float(stmt.amount),
        ]

    def _write_row(self, ws, row: int, values: list, fill: PatternFill) -> None:
        for col_idx, value in enumerate(values, start=1):
            cell = ws.cell(row=row, column=col_idx, value=value)
            cell.fill = fill

    def _write_headers(self, ws, headers: List[str]) -> None:
        """Write styled header row."""
        for col_idx, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = Alignment(horizontal="center")
            cell.border = self.THIN_BORDER

        # Freeze top row
        ws.freeze_panes = "A2"

        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"

    def _auto_width(self, ws, headers: List[str]) -> None:
        """Auto-adjust column widths."""
        for col_idx, header in enumerate(headers, start=1):
            col_letter = get_column_letter(col_idx)
            ws.column_dimensions[col_letter].width = min(len(header) + 4, 35)
