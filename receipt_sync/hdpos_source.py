# HDPOS Source - receipt adapter for HD POS on SQL Server
# One invoice row per receipt; tenders come from PaymentDetailString ("CASH~100|POINTS~20")

import logging
from typing import Any, Dict, List, Optional

from .models import LineItem, RawReceiptLeg, Watermark
from .receipt_source import ReceiptSource
from .transformer import to_decimal


logger = logging.getLogger(__name__)


HEADER_COLUMNS = '''
    CAST(SalesInvoice.Id AS VARCHAR(64)) as InvoiceId,
    SalesInvoice.InvNumber as BillNumber,
    SalesInvoice.Date as InvoiceDate,
    IsNull(SalesInvoice.GrandTotal, 0) as GrandTotal,
    IsNull(SalesInvoice.ReceivedAmount, 0) as ReceivedAmount,
    IsNull(SalesInvoice.ReceivedAmount - SalesInvoice.GrandTotal, 0) as ChangeDue,
    IsNull(SalesInvoice.RoundOffAmount, 0) as RoundOffAmount,
    IsNull(SalesInvoice.EarnedLoyaltyPoints, 0) as InvLP,
    IsNull(SalesInvoice.CurrentLoyaltyPoints, 0) as CustLP,
    SalesInvoice.SalesType as PaymentType,
    SalesInvoice.Creator as Creator,
    IsNull(SalesInvoice.PaymentDetailString, '') as PaymentDetailString,
    CashRegister.RegisterNumber as CRNumber,
    BusinessLocation.ESICNumber as StoreApiKey,
    Customer.Name as CustName,
    Customer.Firstname as FirstName,
    IsNull(Customer.LastName, '') as LastName,
    Contact.MobileNumber as CustMobile,
    IsNull(StoreCreditTransactions.DebitAmount, 0) as StoreCreditUsed
'''

HEADER_JOINS = '''
    FROM tbl_DYN_SalesInvoices as SalesInvoice WITH (NOLOCK)
    LEFT JOIN tbl_DYN_SalesInvoices_BusinessLocations as sibl WITH (NOLOCK)
      ON sibl.SalesInvoiceId = SalesInvoice.Id
    LEFT JOIN tbl_DYN_BusinessLocations as BusinessLocation WITH (NOLOCK)
      ON BusinessLocation.Id = sibl.BusinessLocationId
    LEFT JOIN tbl_DYN_SalesInvoices_Customers as sicust WITH (NOLOCK)
      ON sicust.SalesInvoiceId = SalesInvoice.Id
    LEFT JOIN tbl_DYN_Customers as Customer WITH (NOLOCK)
      ON Customer.Id = sicust.CustomerId
    LEFT JOIN tbl_DYN_Customers_Addresses as CustomerAddress WITH (NOLOCK)
      ON CustomerAddress.CustomerId = Customer.Id
    LEFT JOIN tbl_DYN_Addresses_Contacts as adcont WITH (NOLOCK)
      ON adcont.AddressId = CustomerAddress.AddressId
    LEFT JOIN tbl_DYN_Contacts as Contact WITH (NOLOCK)
      ON Contact.Id = adcont.ContactId
    LEFT JOIN tbl_DYN_SalesInvoices_CashRegisters as sicr WITH (NOLOCK)
      ON sicr.SalesInvoiceId = SalesInvoice.Id
    LEFT JOIN tbl_DYN_CashRegisters as CashRegister WITH (NOLOCK)
      ON CashRegister.Id = sicr.CashRegisterId
    LEFT JOIN tbl_DYN_StoreCreditTransactions as StoreCreditTransactions WITH (NOLOCK)
      ON StoreCreditTransactions.DocumentIdNumber = SalesInvoice.Id
'''

RECENT_QUERY = f'''
    SELECT TOP (:limit) {HEADER_COLUMNS}
    {HEADER_JOINS}
    WHERE SalesInvoice.Date > :since
       OR (SalesInvoice.Date = :since AND (
             LEN(SalesInvoice.InvNumber) > LEN(:receipt_no)
             OR (LEN(SalesInvoice.InvNumber) = LEN(:receipt_no) AND SalesInvoice.InvNumber > :receipt_no)))
    ORDER BY SalesInvoice.Date ASC, LEN(SalesInvoice.InvNumber) ASC, SalesInvoice.InvNumber ASC
'''

SINGLE_QUERY = f'''
    SELECT {HEADER_COLUMNS}
    {HEADER_JOINS}
    WHERE SalesInvoice.InvNumber = :receipt_no
'''

WATERMARK_DATE_QUERY = '''
    SELECT TOP 1 SalesInvoice.Date as InvoiceDate
    FROM tbl_DYN_SalesInvoices as SalesInvoice WITH (NOLOCK)
    WHERE SalesInvoice.InvNumber = :receipt_no
'''

ITEMS_QUERY = '''
    SELECT
      ROW_NUMBER() OVER(Order by (SELECT NULL)) as SerialNumber,
      InvoiceItem.Name as ItemName,
      IsNull(InvoiceItem.Quantity, 0) as Quantity,
      IsNull(InvoiceItem.MRP, 0) as MRP,
      IsNull(ROUND(InvoiceItem.DiscountedAmount, 2), 0) as DiscountedAmount,
      IsNull(ROUND(InvoiceItem.TotalAmount, 2), 0) as ItemTotalAmount,
      IsNull(ROUND((InvoiceItem.AdvanceTax1Percent + InvoiceItem.AdvanceTax2Percent
        + InvoiceItem.AdvanceTax3Percent + InvoiceItem.AdvanceTax4Percent
        + InvoiceItem.AdvanceTax5Percent + InvoiceItem.TaxPercent), 1), 0) as TaxPercentage,
      IsNull(Item.HSNSAC, '') as HSN,
      IsNull(InvoiceItem.Barcode, '') as Barcode
    FROM tbl_DYN_SalesInvoices as SalesInvoice WITH (NOLOCK)
    JOIN tbl_DYN_SalesInvoices_InvoiceItems as siit WITH (NOLOCK)
      ON siit.SalesInvoiceId = SalesInvoice.Id
    JOIN tbl_DYN_InvoiceItems as InvoiceItem WITH (NOLOCK)
      ON siit.InvoiceItemId = InvoiceItem.Id
    LEFT JOIN tbl_DYN_InvoiceItems_Items as iii WITH (NOLOCK)
      ON iii.InvoiceItemId = InvoiceItem.Id
    LEFT JOIN tbl_DYN_Items as Item WITH (NOLOCK)
      ON Item.Id = iii.ItemId
    WHERE SalesInvoice.Id = :invoice_id
'''


def parse_payment_string(value: str) -> List[tuple]:
    """'CASH~100|POINTS~20' -> [('CASH', 100.0), ('POINTS', 20.0)]; bad parts are skipped"""
    tenders = []
    for part in (value or '').split('|'):
        method, _, amount = part.partition('~')
        method = method.strip()
        if not method or not amount.strip():
            continue
        tenders.append((method, float(to_decimal(amount))))
    return tenders


def split_inclusive_tax(net_amount: Any, percentage: Any) -> tuple:
    """Tax-inclusive line total -> (taxable, tax)"""
    net = to_decimal(net_amount)
    pct = to_decimal(percentage)
    if pct <= 0:
        return float(net), 0.0
    taxable = net * 100 / (100 + pct)
    return float(taxable), float(net - taxable)


class HDPOSSource(ReceiptSource):
    """HD POS (tbl_DYN_* schema) adapter"""

    pos_type = 'HDPOS'

    def _legs_from_row(self, row: Dict[str, Any]) -> List[RawReceiptLeg]:
        base = dict(
            receipt_no=str(row['BillNumber']),
            date=row['InvoiceDate'],
            total_amount=float(to_decimal(row.get('GrandTotal'))),
            customer_name=row.get('CustName') or '',
            mobile_number=str(row.get('CustMobile') or ''),
            source_row_id=str(row['InvoiceId']),
            counter=str(row.get('CRNumber') or ''),
            cashier=row.get('Creator') or '',
            first_name=row.get('FirstName') or '',
            last_name=row.get('LastName') or '',
            round_off=float(to_decimal(row.get('RoundOffAmount'))),
            received_amount=float(to_decimal(row.get('ReceivedAmount'))),
            change_due=float(to_decimal(row.get('ChangeDue'))),
            points_earned=float(to_decimal(row.get('InvLP'))),
            total_points=float(to_decimal(row.get('CustLP'))),
            store_credit=float(to_decimal(row.get('StoreCreditUsed'))),
            api_key=row.get('StoreApiKey') or '',
        )
        tenders = parse_payment_string(row.get('PaymentDetailString'))
        if not tenders:
            tenders = [(row.get('PaymentType') or 'CASH', base['total_amount'])]
        return [RawReceiptLeg(pay_method=method, pay_amount=amount, **base) for method, amount in tenders]

    def _legs(self, rows: List[Dict[str, Any]]) -> List[RawReceiptLeg]:
        # Customer contact joins can repeat an invoice; first row wins
        legs, seen = [], set()
        for row in rows:
            if row['InvoiceId'] in seen:
                continue
            seen.add(row['InvoiceId'])
            legs.extend(self._legs_from_row(row))
        return legs

    def _watermark_date(self, watermark: Watermark):
        if watermark.date is not None:
            return watermark.date
        rows = self._query(WATERMARK_DATE_QUERY, {'receipt_no': watermark.receipt_no})
        return rows[0]['InvoiceDate'] if rows else None

    def fetch_recent(self, watermark: Optional[Watermark]) -> List[RawReceiptLeg]:
        if watermark is None:
            return []
        since = self._watermark_date(watermark)
        if since is None:
            logger.warning(f"Watermark receipt {watermark.receipt_no} not found in HDPOS, not fetching")
            return []
        rows = self._query(RECENT_QUERY, {
            'limit': self.batch_size,
            'since': since,
            'receipt_no': watermark.receipt_no,
        })
        logger.debug(f"HDPOS returned {len(rows)} invoices after {watermark.receipt_no}")
        return self._legs(rows)

    def fetch_single(self, receipt_no: str) -> List[RawReceiptLeg]:
        return self._legs(self._query(SINGLE_QUERY, {'receipt_no': receipt_no}))

    def fetch_items(self, group_row_id: str) -> List[LineItem]:
        items = []
        for row in self._query(ITEMS_QUERY, {'invoice_id': group_row_id}):
            qty = to_decimal(row.get('Quantity'))
            mrp = to_decimal(row.get('MRP'))
            discount = to_decimal(row.get('DiscountedAmount'))
            gross = mrp * qty
            taxable, tax = split_inclusive_tax(row.get('ItemTotalAmount'), row.get('TaxPercentage'))
            items.append(LineItem(
                serial_no=int(row.get('SerialNumber') or len(items) + 1),
                name=row.get('ItemName') or '',
                quantity=float(qty),
                unit_price=float(mrp),
                discount_amount=float(discount),
                discount_percentage=float(discount * 100 / gross) if gross > 0 else 0.0,
                net_amount=float(to_decimal(row.get('ItemTotalAmount'))),
                taxable_amount=taxable,
                gst_amount=tax,
                gst_percentage=row.get('TaxPercentage'),
                hsn_code=row.get('HSN') or '',
                item_code=str(row.get('Barcode') or ''),
            ))
        return items
