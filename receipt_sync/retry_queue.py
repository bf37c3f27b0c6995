# Retry Queue - holds receipt groups whose delivery failed
# Entries freeze after max_attempts; frozen entries are only cleared by a dedup hit

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .errors import SourceUnavailable
from .models import ReceiptGroup, RetryEntry


logger = logging.getLogger(__name__)


class RetryQueue:
    """Ordered, receipt-number keyed retry holding area"""

    STATE_KEY = 'failedReceipts'

    def __init__(self, max_attempts: int = 3):
        self.max_attempts = max_attempts
        self.entries: 'OrderedDict[str, RetryEntry]' = OrderedDict()

    def __len__(self):
        return len(self.entries)

    def __contains__(self, receipt_no):
        return receipt_no in self.entries

    def is_frozen(self, entry: RetryEntry) -> bool:
        return entry.attempts >= self.max_attempts

    @property
    def active_count(self) -> int:
        return sum(1 for e in self.entries.values() if not self.is_frozen(e))

    @property
    def frozen_count(self) -> int:
        return len(self.entries) - self.active_count

    def record_failure(self, group: ReceiptGroup, error: str) -> RetryEntry:
        """Add a new entry, or bump attempts on an existing one"""
        now = datetime.now().isoformat()
        entry = self.entries.get(group.receipt_no)
        if entry is None:
            entry = RetryEntry(group.receipt_no, group, last_error=error, attempts=1, last_attempt_at=now)
            self.entries[group.receipt_no] = entry
        else:
            entry.attempts += 1
            entry.last_error = error
            entry.last_attempt_at = now
            entry.group = group
        if self.is_frozen(entry):
            logger.warning(f"Max retries reached for {entry.receipt_no} ({entry.attempts} attempts): {error}")
        return entry

    def remove(self, receipt_no: str) -> Optional[RetryEntry]:
        return self.entries.pop(receipt_no, None)

    def drain(self, attempt: Callable[[RetryEntry], None],
              already_ingested: Optional[Callable[[str], bool]] = None) -> Dict[str, int]:
        """
        Run one retry pass.

        attempt(entry) must raise on failure. Frozen entries are not attempted;
        if already_ingested(receipt_no) says the ledger has them they are
        dropped. Survivors go into a fresh OrderedDict in original order.
        """
        result = {'succeeded': 0, 'failed': 0, 'frozen': 0, 'cleared': 0}
        if not self.entries:
            return result

        logger.info(f"Retrying {self.active_count} failed receipts ({self.frozen_count} frozen)...")
        still_pending: 'OrderedDict[str, RetryEntry]' = OrderedDict()

        items = list(self.entries.items())
        for index, (receipt_no, entry) in enumerate(items):
            if self.is_frozen(entry):
                if already_ingested and self._safe_check(already_ingested, receipt_no):
                    logger.info(f"Frozen receipt {receipt_no} found on server, clearing")
                    result['cleared'] += 1
                    continue
                still_pending[receipt_no] = entry
                result['frozen'] += 1
                continue

            try:
                attempt(entry)
            except SourceUnavailable:
                # Source down: keep this and every unvisited entry untouched
                still_pending.update(items[index:])
                self.entries = still_pending
                raise
            except Exception as e:
                entry.attempts += 1
                entry.last_error = str(e)
                entry.last_attempt_at = datetime.now().isoformat()
                still_pending[receipt_no] = entry
                result['failed'] += 1
                logger.warning(f"Retry failed for {receipt_no} (attempt {entry.attempts}): {e}")
                continue

            result['succeeded'] += 1
            logger.info(f"Retry successful for {receipt_no}")

        self.entries = still_pending
        return result

    @staticmethod
    def _safe_check(check: Callable[[str], bool], receipt_no: str) -> bool:
        try:
            return bool(check(receipt_no))
        except Exception as e:
            logger.debug(f"Existence check for frozen {receipt_no} failed: {e}")
            return False

    def to_list(self) -> List[Dict]:
        return [entry.to_dict() for entry in self.entries.values()]

    def load_list(self, data: Optional[List[Dict]]):
        self.entries = OrderedDict()
        for item in data or []:
            try:
                entry = RetryEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping unreadable retry entry: {e}")
                continue
            self.entries[entry.receipt_no] = entry
