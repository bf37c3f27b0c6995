# Generic Source - adapter for any database exposing the canonical receipt views
# receipt_legs: one row per tender; receipt_items: one row per item line

import logging
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    func,
    or_,
    select,
)

from .models import LineItem, RawReceiptLeg, Watermark
from .receipt_source import ReceiptSource, drop_partial_tail


logger = logging.getLogger(__name__)

metadata = MetaData()

receipt_legs = Table(
    'receipt_legs', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('receipt_no', String(64), nullable=False, index=True),
    Column('receipt_date', DateTime, nullable=False, index=True),
    Column('total_amount', Float),
    Column('pay_method', String(32)),
    Column('pay_amount', Float),
    Column('customer_name', String(128)),
    Column('mobile_number', String(32)),
    Column('source_row_id', String(64), nullable=False),
    Column('counter', String(32)),
    Column('cashier', String(64)),
    Column('store_credit', Float),
)

receipt_items = Table(
    'receipt_items', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('source_row_id', String(64), nullable=False, index=True),
    Column('serial_no', Integer),
    Column('name', String(256)),
    Column('quantity', Float),
    Column('unit_price', Float),
    Column('discount_amount', Float),
    Column('discount_percentage', Float),
    Column('bill_discount', Float),
    Column('net_amount', Float),
    Column('brand', String(128)),
    Column('category', String(128)),
    Column('taxable_amount', Float),
    Column('gst_amount', Float),
    Column('gst_percentage', Float),
    Column('hsn_code', String(32)),
    Column('item_code', String(64)),
)


def _leg(row) -> RawReceiptLeg:
    return RawReceiptLeg(
        receipt_no=row['receipt_no'],
        date=row['receipt_date'],
        total_amount=row['total_amount'] or 0.0,
        pay_method=row['pay_method'] or '',
        pay_amount=row['pay_amount'] or 0.0,
        customer_name=row['customer_name'] or '',
        mobile_number=row['mobile_number'] or '',
        source_row_id=str(row['source_row_id']),
        counter=row['counter'] or '',
        cashier=row['cashier'] or '',
        store_credit=row['store_credit'] or 0.0,
    )


class GenericSource(ReceiptSource):
    """Reads the canonical receipt_legs / receipt_items tables through SQLAlchemy Core"""

    pos_type = 'GENERIC'

    def _watermark_date(self, watermark: Watermark):
        if watermark.date is not None:
            return watermark.date
        rows = self._query(
            select(receipt_legs.c.receipt_date)
            .where(receipt_legs.c.receipt_no == watermark.receipt_no)
            .limit(1)
        )
        return rows[0]['receipt_date'] if rows else None

    def fetch_recent(self, watermark: Optional[Watermark]) -> List[RawReceiptLeg]:
        if watermark is None:
            return []
        since = self._watermark_date(watermark)
        if since is None:
            logger.warning(f"Watermark receipt {watermark.receipt_no} not found, not fetching")
            return []

        c = receipt_legs.c
        # Same-timestamp receipts are ordered by (length, number) so S/10 sorts after S/9
        number_length = func.length(c.receipt_no)
        bound_length = len(watermark.receipt_no)
        statement = (
            select(receipt_legs)
            .where(or_(
                c.receipt_date > since,
                and_(c.receipt_date == since, or_(
                    number_length > bound_length,
                    and_(number_length == bound_length, c.receipt_no > watermark.receipt_no),
                )),
            ))
            .order_by(c.receipt_date, number_length, c.receipt_no, c.id)
            .limit(self.batch_size)
        )
        legs = [_leg(row) for row in self._query(statement)]
        return drop_partial_tail(legs, self.batch_size)

    def fetch_single(self, receipt_no: str) -> List[RawReceiptLeg]:
        statement = (
            select(receipt_legs)
            .where(receipt_legs.c.receipt_no == receipt_no)
            .order_by(receipt_legs.c.id)
        )
        return [_leg(row) for row in self._query(statement)]

    def fetch_items(self, group_row_id: str) -> List[LineItem]:
        c = receipt_items.c
        statement = (
            select(receipt_items)
            .where(c.source_row_id == group_row_id)
            .order_by(c.serial_no, c.id)
        )
        items = []
        for row in self._query(statement):
            items.append(LineItem(
                serial_no=row['serial_no'] or len(items) + 1,
                name=row['name'] or '',
                quantity=row['quantity'] or 0.0,
                unit_price=row['unit_price'] or 0.0,
                discount_amount=row['discount_amount'] or 0.0,
                discount_percentage=row['discount_percentage'] or 0.0,
                bill_discount=row['bill_discount'] or 0.0,
                net_amount=row['net_amount'] or 0.0,
                brand=row['brand'] or '',
                category=row['category'] or '',
                taxable_amount=row['taxable_amount'] or 0.0,
                gst_amount=row['gst_amount'] or 0.0,
                gst_percentage=row['gst_percentage'],
                hsn_code=row['hsn_code'] or '',
                item_code=row['item_code'] or '',
            ))
        return items
