"""OFX bank statement parser."""

import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from ofxparse import OfxParser as OfxLib

from ledgermatch.engine.errors import RecordError
from ledgermatch.engine.models import BankStatementEntry

logger = logging.getLogger(__name__)


class OFXParser:
    """Parse OFX/QFX bank statement files into BankStatementEntry objects."""

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def parse(self, file_path: str | Path) -> List[BankStatementEntry]:
        """
        Parse an OFX file and return its statement lines.

        Args:
            file_path: Path to the OFX/QFX file.

        Returns:
            Statement entries from every account in the file. Lines that fail
            validation are logged and skipped.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the file cannot be parsed.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"OFX file not found: {file_path}")

        if file_path.suffix.lower() not in (".ofx", ".qfx"):
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        try:
            with open(file_path, "rb") as f:
                ofx = OfxLib.parse(f)
        except Exception as e:
            raise ValueError(f"Failed to parse OFX file: {e}") from e

        entries: List[BankStatementEntry] = []
        seen_ids = set()

        for account in self._get_accounts(ofx):
            for position, stmt_txn in enumerate(account.statement.transactions):
                try:
                    entry = self._convert_entry(stmt_txn, account, position)
                except RecordError as e:
                    logger.warning("Skipping OFX line in %s: %s", file_path.name, e)
                    continue
                if entry.id in seen_ids:
                    logger.warning("Skipping OFX line with duplicate id %r", entry.id)
                    continue
                seen_ids.add(entry.id)
                entries.append(entry)

        logger.info("Parsed %d statement entries from %s", len(entries), file_path.name)
        return entries

    def parse_multiple(self, file_paths: List[str | Path]) -> List[BankStatementEntry]:
        """
        Parse multiple OFX files and return combined statement entries.

        Args:
            file_paths: List of paths to OFX/QFX files.

        Returns:
            Combined list of BankStatementEntry objects, in file order.
        """
        all_entries: List[BankStatementEntry] = []
        for path in file_paths:
            all_entries.extend(self.parse(path))
        return all_entries

    def _get_accounts(self, ofx):
        """Extract accounts from parsed OFX data."""
        if getattr(ofx, "accounts", None):
            return ofx.accounts
        if getattr(ofx, "account", None) is not None:
            return [ofx.account]
        raise ValueError("No accounts found in OFX file")

    def _convert_entry(self, stmt_txn, account, position: int) -> BankStatementEntry:
        """Convert an OFX statement line to a BankStatementEntry. Amount keeps the bank's sign."""
        posted = stmt_txn.date
        if isinstance(posted, str):
            posted = datetime.strptime(posted[:8], "%Y%m%d")

        # FITID is optional in practice; fall back to a stable per-account id
        entry_id = getattr(stmt_txn, "id", None) or (
            f"{getattr(account, 'account_id', 'acct')}-{position + 1}"
        )

        entry = BankStatementEntry(
            id=str(entry_id),
            amount=Decimal(str(stmt_txn.amount)),
            posted_on=posted.date() if isinstance(posted, datetime) else posted,
        )
        entry.validate(today=self.today)
        return entry
