# Transformer - turns a receipt group and its items into the ledger payload
# Pure: no I/O, no clock, no config lookups beyond the options passed in

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from .models import LineItem, ReceiptGroup

CENT = Decimal('0.01')
ZERO = Decimal('0')
LOYALTY_METHOD = 'POINTS'


@dataclass
class TransformOptions:
    api_key: str = ''
    tz_offset_minutes: int = 330
    currency: str = 'INR'
    country_code: str = '91'


def to_decimal(value: Any) -> Decimal:
    """Coerce a source value to Decimal; missing, unparseable or non-finite -> 0"""
    if value is None or value == '':
        return ZERO
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    return result if result.is_finite() else ZERO


def money(value: Any) -> float:
    return float(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def quantity(value: Any) -> float:
    return float(to_decimal(value))


def to_utc_iso(date: datetime, offset_minutes: int) -> str:
    """
    Receipt timestamp as a UTC ISO-8601 string.

    POS databases store wall-clock time without a zone; naive values are
    shifted back by the configured offset. Aware values are converted as-is.
    """
    if date.tzinfo is not None:
        utc = date.astimezone(timezone.utc).replace(tzinfo=None)
    else:
        utc = date - timedelta(minutes=offset_minutes)
    return utc.isoformat(timespec='milliseconds') + 'Z'


def to_source_local(date: Optional[datetime], offset_minutes: int) -> Optional[datetime]:
    """Naive POS wall-clock time for a date; aware values are shifted into the source offset"""
    if date is None or date.tzinfo is None:
        return date
    return date.astimezone(timezone.utc).replace(tzinfo=None) + timedelta(minutes=offset_minutes)


def build_gst_details(items: List[LineItem]) -> List[Dict[str, float]]:
    """Bucket items by tax percentage; each bucket's gst splits evenly into cgst/sgst"""
    buckets: 'OrderedDict[Decimal, Dict[str, Decimal]]' = OrderedDict()
    for item in items:
        pct = to_decimal(item.gst_percentage).normalize()
        bucket = buckets.setdefault(pct, {'gst': ZERO, 'taxable': ZERO})
        bucket['gst'] += to_decimal(item.gst_amount)
        bucket['taxable'] += to_decimal(item.taxable_amount)

    details = []
    for pct, bucket in buckets.items():
        gst = bucket['gst'].quantize(CENT, rounding=ROUND_HALF_UP)
        cgst = (gst / 2).quantize(CENT, rounding=ROUND_HALF_UP)
        # sgst takes the remainder so the halves always add back up
        sgst = gst - cgst
        details.append({
            'percentage': float(pct),
            'cgst': float(cgst),
            'sgst': float(sgst),
            'gst': float(gst),
            'taxableAmount': money(bucket['taxable']),
        })
    return details


def build_items(items: List[LineItem]) -> List[Dict[str, Any]]:
    return [{
        'serialNo': item.serial_no,
        'name': item.name or '',
        'quantity': quantity(item.quantity),
        'unitPrice': money(item.unit_price),
        'discount': money(item.discount_amount),
        'discountPercentage': money(item.discount_percentage),
        'billDiscount': money(item.bill_discount),
        'netAmount': money(item.net_amount),
        'brand': item.brand or '',
        'category': item.category or '',
        'taxableAmount': money(item.taxable_amount),
        'gst': float(to_decimal(item.gst_percentage)),
        'gstAmount': money(item.gst_amount),
        'hsnCode': item.hsn_code or '',
        'itemCode': item.item_code or '',
    } for item in items]


def build_payment(group: ReceiptGroup, items: List[LineItem],
                  gst_details: List[Dict[str, float]], currency: str) -> Dict[str, Any]:
    head = group.head
    loyalty = sum((to_decimal(leg.pay_amount) for leg in group.legs
                   if (leg.pay_method or '').strip().upper() == LOYALTY_METHOD), ZERO)
    discount = sum((to_decimal(i.discount_amount) + to_decimal(i.bill_discount) for i in items), ZERO)
    # Share of the undiscounted bill the customer saved
    gross = to_decimal(head.total_amount) + discount
    savings_pct = discount * 100 / gross if gross > 0 else ZERO

    payment = {
        'currency': currency,
        'totalItem': len(items),
        'totalQuantity': float(sum((to_decimal(i.quantity) for i in items), ZERO)),
        'preDiscountTotal': money(sum((to_decimal(i.unit_price) for i in items), ZERO)),
        'totalTax': money(sum((Decimal(str(b['gst'])) for b in gst_details), ZERO)),
        'totalAmount': money(head.total_amount),
        'discount': money(discount),
        'totalSavings': money(discount),
        'savingsPercentage': money(savings_pct),
        'adjustment': money(head.round_off),
        'received': money(head.received_amount),
        'balance': money(head.change_due),
        'isGstIncluded': True,
        'loyaltyRedemptions': money(loyalty),
        'redemptions': money(head.store_credit),
    }

    if group.is_split:
        payment['splitPayments'] = [
            {'method': leg.pay_method or '', 'amount': money(leg.pay_amount)}
            for leg in group.legs
        ]
    else:
        payment['mode'] = head.pay_method or ''
    return payment


def transform(group: ReceiptGroup, items: List[LineItem],
              options: Optional[TransformOptions] = None) -> Dict[str, Any]:
    """Build the canonical delivery payload for one receipt"""
    options = options or TransformOptions()
    head = group.head
    gst_details = build_gst_details(items)

    return {
        'receiptDetails': {
            'receiptNo': group.receipt_no,
            'date': to_utc_iso(head.date, options.tz_offset_minutes),
            'counter': head.counter or '',
            'counterPerson': head.cashier or '',
            'posId': head.counter or '',
            'typeOfOrder': 'In-Store',
            'invoiceType': 'Sales',
        },
        'items': build_items(items),
        'payment': build_payment(group, items, gst_details, options.currency),
        'gstDetails': gst_details,
        'customerInfo': {
            'name': head.customer_name or '',
            'firstName': head.first_name or '',
            'lastName': head.last_name or '',
            'countryCode': options.country_code,
            'mobileNumber': head.mobile_number or '',
            'whatsappOptIn': True,
        },
        'loyaltyProgram': {
            'pointsEarned': money(head.points_earned),
            'totalPoints': money(head.total_points),
        },
        'apiKey': head.api_key or options.api_key or '',
    }
