"""CLI entry point for transaction reconciliation."""

import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import click

from ledgermatch.engine.config import MatchingConfig
from ledgermatch.engine.edge_cases import EdgeCaseResolver, PartialMatch
from ledgermatch.engine.errors import ConfigurationError, ReconciliationError
from ledgermatch.engine.matcher import MatchingEngine
from ledgermatch.engine.models import BankStatementEntry, ReconciliationResult, Transaction
from ledgermatch.parsers.csv_parser import CSVParser
from ledgermatch.parsers.ofx_parser import OFXParser
from ledgermatch.reports.excel_report import ExcelReportGenerator

logger = logging.getLogger(__name__)

OFX_SUFFIXES = (".ofx", ".qfx")


def build_config(
    preset: str,
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, object]] = None,
) -> MatchingConfig:
    """
    Resolve the matching configuration: preset, then config file, then CLI overrides.

    Raises:
        ConfigurationError: If the file is unreadable or any value is invalid.
    """
    config = MatchingConfig.preset(preset)

    if config_file:
        try:
            with open(config_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read config file {config_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {config_file} must contain a JSON object")
        config = MatchingConfig.from_dict(data, base=config)

    changes = {k: v for k, v in (overrides or {}).items() if v is not None}
    if changes:
        config = MatchingConfig.from_dict(changes, base=config)
    return config


def load_statements(paths: Sequence[str], csv_parser: CSVParser) -> List[BankStatementEntry]:
    """
    Read statement entries from OFX/QFX or CSV/Excel files, in the given order.

    An id already seen in an earlier file is skipped, keeping the first entry.
    """
    ofx_parser = OFXParser()
    entries: List[BankStatementEntry] = []
    seen_ids = set()
    for path in paths:
        if Path(path).suffix.lower() in OFX_SUFFIXES:
            parsed = ofx_parser.parse(path)
        else:
            parsed = csv_parser.parse_statements(path)

        for entry in parsed:
            if entry.id in seen_ids:
                logger.warning("Skipping statement %r in %s: duplicate id", entry.id, path)
                continue
            seen_ids.add(entry.id)
            entries.append(entry)
    return entries


def filter_by_date_range(
    transactions: Sequence[Transaction],
    entries: Sequence[BankStatementEntry],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Tuple[List[Transaction], List[BankStatementEntry]]:
    """
    Keep records dated within [start, end]; either bound may be open.

    Transactions are compared by the calendar date they were recorded with,
    statement entries by their posting date.

    Raises:
        ConfigurationError: If start is after end.
    """
    if start and end and start > end:
        raise ConfigurationError(f"start date {start} is after end date {end}")

    def in_range(day: date) -> bool:
        if start and day < start:
            return False
        if end and day > end:
            return False
        return True

    kept_transactions = [t for t in transactions if in_range(t.occurred_at.date())]
    kept_entries = [s for s in entries if in_range(s.posted_on)]
    logger.info(
        "Date range %s..%s kept %d/%d transactions and %d/%d statement entries",
        start or "*", end or "*",
        len(kept_transactions), len(transactions), len(kept_entries), len(entries),
    )
    return kept_transactions, kept_entries


def find_partial_matches(
    engine: MatchingEngine,
    resolver: EdgeCaseResolver,
    result: ReconciliationResult,
) -> List[PartialMatch]:
    """Best split-payment explanation for each unmatched transaction, using only unmatched entries."""
    free_ids = {stmt.id for stmt in result.unmatched_statements}
    found: List[PartialMatch] = []
    for txn in result.unmatched_transactions:
        candidates = [
            stmt for stmt in resolver.partial_candidates(engine, txn)
            if stmt.id in free_ids
        ]
        partials = resolver.handle_partial_matches(txn, candidates)
        if partials:
            found.append(partials[0])
    return found


def print_summary(
    result: ReconciliationResult,
    duplicates_found: Optional[int],
    partials: Sequence[PartialMatch],
) -> None:
    summary = result.summary
    click.echo("\n" + "=" * 60)
    click.echo("  RECONCILIATION SUMMARY")
    click.echo("=" * 60)
    click.echo(f"  Match Rate:             {summary.match_rate:.1f}%")
    click.echo(f"  Matched:                {summary.matched_transactions}")
    click.echo(f"    +-- Exact:            {summary.exact_matches}")
    click.echo(f"    +-- Close:            {summary.close_matches}")
    click.echo(f"    +-- Fuzzy:            {summary.fuzzy_matches}")
    click.echo(f"    +-- Possible:         {summary.possible_matches}")
    click.echo(f"  Unmatched Transactions: {summary.unmatched_transactions}")
    click.echo(f"  Unmatched Statements:   {summary.unmatched_statements}")
    click.echo(f"  Matched Amount:         {summary.total_amount_matched:,.2f}")
    click.echo(f"  Unmatched Amount:       {summary.total_amount_unmatched:,.2f}")
    if duplicates_found is not None:
        click.echo(f"  Duplicate Groups:       {duplicates_found}")
    for partial in partials:
        ids = ", ".join(stmt.id for stmt in partial.statements)
        click.echo(
            f"  Partial match:          {partial.transaction.id} <- {ids} "
            f"(confidence {partial.confidence:.2f})"
        )
    click.echo("=" * 60)


@click.command()
@click.option(
    "--transactions", "-t",
    required=True,
    type=click.Path(dir_okay=False),
    help="Path to system transactions file (CSV or Excel).",
)
@click.option(
    "--statements", "-s",
    required=True,
    multiple=True,
    type=click.Path(dir_okay=False),
    help="Path to bank statement file(s): OFX/QFX, CSV or Excel.",
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path for the output Excel report.",
)
@click.option(
    "--preset", "-p",
    type=click.Choice(["default", "strict", "relaxed"], case_sensitive=False),
    default="default",
    show_default=True,
    help="Base matching configuration.",
)
@click.option(
    "--config", "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="JSON file with matching configuration fields, applied over the preset.",
)
@click.option("--date-tolerance", "-d", type=int, default=None,
              help="Maximum date distance in days.")
@click.option("--amount-tolerance", "-a", type=float, default=None,
              help="Amount tolerance as a percentage of the transaction amount.")
@click.option("--min-confidence", type=float, default=None,
              help="Minimum confidence score (0-1) for a match.")
@click.option("--ignore-weekends/--count-weekends", default=None,
              help="Count date distance in business days.")
@click.option("--partial/--no-partial", default=None,
              help="Look for split payments among unmatched records.")
@click.option("--start-date", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="Ignore records dated before this day (YYYY-MM-DD).")
@click.option("--end-date", type=click.DateTime(["%Y-%m-%d"]), default=None,
              help="Ignore records dated after this day (YYYY-MM-DD).")
@click.option("--detect-duplicates", is_flag=True, default=False,
              help="Report groups of likely duplicate transactions.")
@click.option("--verbose", "-v", is_flag=True, default=False,
              help="Enable debug logging.")
def main(
    transactions: str,
    statements: tuple,
    output: Optional[str],
    preset: str,
    config_file: Optional[str],
    date_tolerance: Optional[int],
    amount_tolerance: Optional[float],
    min_confidence: Optional[float],
    ignore_weekends: Optional[bool],
    partial: Optional[bool],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    detect_duplicates: bool,
    verbose: bool,
) -> None:
    """
    Transaction Reconciliation Tool

    Matches system transactions against bank statement entries and
    optionally writes a detailed Excel report.

    Example:
        ledgermatch --transactions tx.csv --statements bank.ofx --output report.xlsx
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    click.echo("=" * 60)
    click.echo("  RECONCILIATION ENGINE")
    click.echo("=" * 60)

    try:
        config = build_config(preset, config_file, {
            "date_tolerance_days": date_tolerance,
            "amount_tolerance_percent": amount_tolerance,
            "min_confidence_score": min_confidence,
            "ignore_weekends": ignore_weekends,
            "enable_partial_matching": partial,
        })
        click.echo(f"\n  Configuration: {config}")

        csv_parser = CSVParser()

        click.echo(f"\n  Parsing transactions: {transactions}...")
        txns = csv_parser.parse_transactions(Path(transactions))
        click.echo(f"   Found {len(txns)} transactions")

        click.echo(f"\n  Parsing {len(statements)} statement file(s)...")
        entries = load_statements(statements, csv_parser)
        click.echo(f"   Found {len(entries)} statement entries")

        if start_date or end_date:
            txns, entries = filter_by_date_range(
                txns,
                entries,
                start_date.date() if start_date else None,
                end_date.date() if end_date else None,
            )
            click.echo(f"   Kept {len(txns)} transactions and {len(entries)} statement entries in range")

        engine = MatchingEngine(config)
        engine.load_transactions(txns)
        engine.load_statements(entries)

        click.echo("\n  Reconciling...")
        result = engine.reconcile()

        resolver = EdgeCaseResolver(config)
        duplicates = resolver.detect_duplicates(txns) if detect_duplicates else []
        partials = (
            find_partial_matches(engine, resolver, result)
            if config.enable_partial_matching else []
        )

        if output:
            click.echo(f"\n  Generating report: {output}...")
            output_path = ExcelReportGenerator().generate(result, output, duplicates)

        print_summary(result, len(duplicates) if detect_duplicates else None, partials)
        if output:
            click.echo(f"\n  Report saved to: {output_path.absolute()}")

    except ReconciliationError as e:
        click.echo(f"\n  ERROR ({e.category}): {e}", err=True)
        sys.exit(e.exit_code)
    except FileNotFoundError as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"\n  ERROR: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error during reconciliation")
        click.echo(f"\n  UNEXPECTED ERROR: {e}", err=True)
        sys.exit(2)


if __name__ == "__main__":
    main()
