# QuickBill Source - placeholder adapter
# The QuickBill schema is not mapped yet, so this adapter never returns rows

import logging
from typing import List, Optional

from .models import LineItem, RawReceiptLeg, Watermark
from .receipt_source import ReceiptSource


logger = logging.getLogger(__name__)


class QuickBillSource(ReceiptSource):
    """QuickBill POS adapter. Fetches nothing until its tables are mapped."""

    pos_type = 'QUICKBILL'

    def fetch_recent(self, watermark: Optional[Watermark]) -> List[RawReceiptLeg]:
        logger.warning('QuickBill receipt queries are not implemented; nothing fetched')
        return []

    def fetch_items(self, group_row_id: str) -> List[LineItem]:
        logger.warning(f"QuickBill item details not available for {group_row_id}")
        return []

    def fetch_single(self, receipt_no: str) -> List[RawReceiptLeg]:
        logger.warning(f"QuickBill receipt {receipt_no} cannot be looked up yet")
        return []
