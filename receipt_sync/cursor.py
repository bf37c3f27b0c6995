# Cursor - persisted sync watermark for the Receipt Sync Agent
# Only ever moves forward; survives restarts through the StateStore

import logging
from datetime import datetime
from typing import Optional

from .errors import InvalidReceiptNumber
from .models import Watermark, receipt_sequence
from .state_store import StateStore


logger = logging.getLogger(__name__)


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Ignoring unreadable cursor date {value!r}")
        return None


class Cursor:
    """Last successfully processed receipt, plus the ledger's own watermark"""

    RECEIPT_KEY = 'lastSyncedReceiptNo'
    DATE_KEY = 'lastSyncedReceiptDate'
    SERVER_KEY = 'lastReceiptOnServer'

    def __init__(self, store: StateStore):
        self.store = store
        self.receipt_no: Optional[str] = store.load_state(self.RECEIPT_KEY)
        self.date: Optional[datetime] = _parse_dt(store.load_state(self.DATE_KEY))
        self.server_receipt_no: Optional[str] = store.load_state(self.SERVER_KEY)

    @property
    def watermark(self) -> Optional[Watermark]:
        if not self.receipt_no:
            return None
        return Watermark(self.receipt_no, self.date)

    def is_newer(self, receipt_no: str, date: Optional[datetime] = None) -> bool:
        """
        True if (receipt_no, date) is strictly past the current position.

        Dates decide when both sides have one and they differ; otherwise the
        numeric suffix of the receipt number does. Raises InvalidReceiptNumber
        for a candidate without a numeric suffix.
        """
        candidate_seq = receipt_sequence(receipt_no)
        if not self.receipt_no:
            return True
        if date and self.date and date != self.date:
            return date > self.date
        try:
            current_seq = receipt_sequence(self.receipt_no)
        except InvalidReceiptNumber:
            # A stored cursor we cannot order is replaced by any orderable one
            logger.warning(f"Stored cursor {self.receipt_no!r} is not orderable, replacing it")
            return True
        return candidate_seq > current_seq

    def advance(self, receipt_no: str, date: Optional[datetime] = None) -> bool:
        """Move to (receipt_no, date) if it is newer. Returns True when moved."""
        try:
            if not self.is_newer(receipt_no, date):
                return False
        except InvalidReceiptNumber as e:
            logger.warning(f"Cursor not advanced: {e}")
            return False

        self.receipt_no = receipt_no
        self.date = date
        self.store.save_many({
            self.RECEIPT_KEY: receipt_no,
            self.DATE_KEY: date.isoformat() if date else None,
        })
        logger.debug(f"Cursor advanced to {receipt_no} ({date})")
        return True

    def skip_past(self, receipt_no: str, date: Optional[datetime] = None) -> bool:
        """
        Move past a receipt that will never be delivered.

        A receipt number without a numeric suffix cannot be ordered, so only
        its date is taken, and only when it is later than the current one.
        """
        try:
            receipt_sequence(receipt_no)
        except InvalidReceiptNumber:
            if not self.receipt_no or date is None or (self.date and date <= self.date):
                return False
            self.date = date
            self.store.save_state(self.DATE_KEY, date.isoformat())
            logger.debug(f"Cursor date moved past unorderable receipt {receipt_no!r} to {date}")
            return True
        return self.advance(receipt_no, date)

    def resolve_watermark(self, ledger) -> Optional[Watermark]:
        """
        Pick the fetch bound for this cycle.

        The ledger's most recent receipt wins when it is ahead of the local
        cursor because other agents may write the same ledger. A local cursor
        already past it stays the bound. None means there is nothing to bound
        a fetch with and the cycle must not scan.
        """
        remote_no = None
        try:
            remote_no = ledger.get_recent_receipt_no()
        except Exception as e:
            logger.warning(f"Could not fetch last synced receipt from server, using local cursor: {e}")

        if remote_no:
            if remote_no != self.server_receipt_no:
                self.server_receipt_no = remote_no
                self.store.save_state(self.SERVER_KEY, remote_no)
            if remote_no == self.receipt_no:
                return self.watermark
            if self.advance(remote_no):
                logger.info(f"Cursor moved forward to server value {remote_no}")
                return Watermark(remote_no)
            if self.receipt_no:
                logger.debug(f"Server value {remote_no} is behind local cursor {self.receipt_no}")
                return self.watermark
            return Watermark(remote_no)

        if self.receipt_no:
            return self.watermark

        logger.warning("No watermark on server or locally; skipping fetch to avoid a full table scan")
        return None
