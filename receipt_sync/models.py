# Canonical record types for the Receipt Sync Agent
# Every POS adapter maps its native columns onto these

import re
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .errors import InvalidReceiptNumber

_SEQUENCE_RE = re.compile(r'[0-9]+')


def receipt_sequence(receipt_no: str) -> int:
    """
    Numeric suffix after the last '/' of a receipt number.

    'ANN/S/1042' -> 1042. Raises InvalidReceiptNumber when the suffix is not
    numeric, since such numbers cannot be ordered against the cursor.
    """
    tail = str(receipt_no or '').rsplit('/', 1)[-1].strip()
    if not _SEQUENCE_RE.fullmatch(tail):
        raise InvalidReceiptNumber(receipt_no)
    return int(tail)


@dataclass
class RawReceiptLeg:
    """One row from a ReceiptSource: a single tender of a receipt"""
    receipt_no: str
    date: datetime
    total_amount: float = 0.0
    pay_method: str = ''
    pay_amount: float = 0.0
    customer_name: str = ''
    mobile_number: str = ''
    source_row_id: str = ''
    # Header fields carried when the vendor has them
    counter: str = ''
    cashier: str = ''
    first_name: str = ''
    last_name: str = ''
    round_off: float = 0.0
    received_amount: float = 0.0
    change_due: float = 0.0
    points_earned: float = 0.0
    total_points: float = 0.0
    store_credit: float = 0.0
    api_key: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['date'] = self.date.isoformat() if self.date else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RawReceiptLeg':
        values = dict(data)
        if isinstance(values.get('date'), str):
            values['date'] = datetime.fromisoformat(values['date'])
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class LineItem:
    """A single item line of a receipt"""
    serial_no: int
    name: str
    quantity: float = 0.0
    unit_price: float = 0.0
    discount_amount: float = 0.0
    discount_percentage: float = 0.0
    bill_discount: float = 0.0
    net_amount: float = 0.0
    brand: str = ''
    category: str = ''
    taxable_amount: float = 0.0
    gst_amount: float = 0.0
    gst_percentage: Any = 0
    hsn_code: str = ''
    item_code: str = ''


@dataclass
class ReceiptGroup:
    """All legs sharing one receipt number, in arrival order"""
    receipt_no: str
    legs: List[RawReceiptLeg] = field(default_factory=list)

    @property
    def head(self) -> RawReceiptLeg:
        return self.legs[0]

    @property
    def date(self) -> datetime:
        return self.legs[0].date

    @property
    def row_id(self) -> str:
        return self.legs[0].source_row_id

    @property
    def is_split(self) -> bool:
        return len(self.legs) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {'receipt_no': self.receipt_no, 'legs': [leg.to_dict() for leg in self.legs]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReceiptGroup':
        return cls(data['receipt_no'], [RawReceiptLeg.from_dict(leg) for leg in data.get('legs', [])])


def group_legs(rows: Iterable[RawReceiptLeg]) -> 'OrderedDict[str, ReceiptGroup]':
    """Group legs by exact receipt number, keeping first-seen order"""
    groups: 'OrderedDict[str, ReceiptGroup]' = OrderedDict()
    for row in rows:
        group = groups.get(row.receipt_no)
        if group is None:
            group = groups[row.receipt_no] = ReceiptGroup(row.receipt_no)
        group.legs.append(row)
    return groups


@dataclass(frozen=True)
class Watermark:
    """Position in the receipt stream. date may be unknown for remote values."""
    receipt_no: str
    date: Optional[datetime] = None


@dataclass
class DeliveryResult:
    """Outcome of a create call that did not fail"""
    created: bool
    already_exists: bool = False
    record_id: Optional[str] = None
    message: str = ''


@dataclass
class RetryEntry:
    """A group waiting for another delivery attempt"""
    receipt_no: str
    group: ReceiptGroup
    last_error: str = ''
    attempts: int = 1
    last_attempt_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'receipt_no': self.receipt_no,
            'group': self.group.to_dict(),
            'last_error': self.last_error,
            'attempts': self.attempts,
            'last_attempt_at': self.last_attempt_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RetryEntry':
        return cls(
            receipt_no=data['receipt_no'],
            group=ReceiptGroup.from_dict(data['group']),
            last_error=data.get('last_error', ''),
            attempts=int(data.get('attempts', 1)),
            last_attempt_at=data.get('last_attempt_at'),
        )


@dataclass
class SyncStats:
    """Cumulative counters. Callers only ever see copies."""
    total_synced: int = 0
    total_failed: int = 0
    last_error: Optional[str] = None
    last_sync_time: Optional[str] = None
    queue_size: int = 0
    failed_count: int = 0
    is_syncing: bool = False
    status: str = 'idle'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalSynced': self.total_synced,
            'totalFailed': self.total_failed,
            'lastError': self.last_error,
            'lastSyncTime': self.last_sync_time,
            'queueSize': self.queue_size,
            'failedCount': self.failed_count,
            'isSyncing': self.is_syncing,
            'status': self.status,
        }
