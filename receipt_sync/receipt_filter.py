# Receipt Filter - validation and dedup gate in front of the transformer

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidReceiptNumber, ValidationRejected
from .models import ReceiptGroup, receipt_sequence
from .transformer import to_source_local


logger = logging.getLogger(__name__)


@dataclass
class FilterOutcome:
    passed: List[ReceiptGroup] = field(default_factory=list)
    already_synced: List[ReceiptGroup] = field(default_factory=list)
    rejected: List[Tuple[ReceiptGroup, str]] = field(default_factory=list)

    def reason_for(self, receipt_no: str) -> Optional[str]:
        for group, reason in self.rejected:
            if group.receipt_no == receipt_no:
                return reason
        return None


class ReceiptFilter:
    """Applies prefix, receipt-number, cutoff and remote-dedup rules to each group"""

    def __init__(self, ledger, store_prefixes: Sequence[str] = (),
                 cutoff_date: Optional[datetime] = None, tz_offset_minutes: int = 330):
        self.ledger = ledger
        self.store_prefixes = tuple(store_prefixes or ())
        self.tz_offset_minutes = tz_offset_minutes
        # POS dates are naive wall-clock time, so the cutoff is compared the same way
        self.cutoff_date = to_source_local(cutoff_date, tz_offset_minutes)

    def check(self, group: ReceiptGroup):
        """Raise ValidationRejected if the group's head leg fails a local rule"""
        head = group.head
        if self.store_prefixes and not head.receipt_no.startswith(self.store_prefixes):
            raise ValidationRejected(head.receipt_no, ValidationRejected.INVALID_PREFIX)
        try:
            receipt_sequence(head.receipt_no)
        except InvalidReceiptNumber:
            raise ValidationRejected(head.receipt_no, ValidationRejected.MALFORMED_RECEIPT_NO)
        date = to_source_local(head.date, self.tz_offset_minutes)
        if self.cutoff_date and (date is None or date < self.cutoff_date):
            raise ValidationRejected(
                head.receipt_no, ValidationRejected.BEFORE_CUTOFF,
                f"{head.date} < {self.cutoff_date}",
            )

    def is_already_synced(self, group: ReceiptGroup) -> bool:
        """Remote existence check. A failing check rejects rather than risk a duplicate."""
        try:
            return bool(self.ledger.receipt_exists(group.receipt_no))
        except Exception as e:
            raise ValidationRejected(group.receipt_no, ValidationRejected.DEDUP_CHECK_FAILED, str(e))

    def filter(self, groups: Iterable[ReceiptGroup]) -> FilterOutcome:
        outcome = FilterOutcome()
        for group in groups:
            try:
                self.check(group)
                if self.is_already_synced(group):
                    logger.info(f"Receipt {group.receipt_no} already on server, skipping")
                    outcome.already_synced.append(group)
                    continue
            except ValidationRejected as e:
                logger.info(f"Skipping receipt {e}")
                outcome.rejected.append((group, e.reason))
                continue
            outcome.passed.append(group)

        if outcome.rejected or outcome.already_synced:
            logger.info(
                f"Filter: {len(outcome.passed)} passed, "
                f"{len(outcome.already_synced)} already synced, {len(outcome.rejected)} rejected"
            )
        return outcome
