# Templates - kitchen ticket and bill layouts
# Builds KOT/bill payloads into complete ESC/POS print jobs

from datetime import datetime
from typing import Optional, Union

from .escpos_builder import ESCPOSBuilder, SIZE_DOUBLE_BOTH, SIZE_DOUBLE_HEIGHT, SIZE_NORMAL
from .models import BillPayload, KOTPayload


def format_money(amount: float, symbol: str = '') -> str:
    """Currency symbol plus two fixed decimals; negatives keep the sign in front."""
    if amount < 0:
        return f"-{symbol}{abs(amount):.2f}"
    return f"{symbol}{amount:.2f}"


def format_kot_number(kot_number: Optional[Union[int, str]]) -> str:
    if kot_number is None or kot_number == '':
        return '01'
    return str(kot_number).zfill(2)


def _format_rate(rate: float) -> str:
    return f"{rate:g}"


def _identifier(table_number: Optional[str], token_number: Optional[int],
                is_parcel: bool) -> Optional[str]:
    if is_parcel:
        return f"PARCEL: #{token_number or 0}"
    if table_number:
        return f"TABLE: {table_number}"
    if token_number:
        return f"TOKEN: {token_number}"
    return None


def _identifier_block(builder: ESCPOSBuilder, label: Optional[str]):
    """Enlarged, boxed, centered table/token label."""
    if not label:
        return
    builder.center().bold().font_size(SIZE_DOUBLE_HEIGHT)
    builder.boxed(label)
    builder.font_size(SIZE_NORMAL).bold(False)


def generate_kot_commands(data: KOTPayload, paper_format: str = '80mm') -> bytes:
    """Build a kitchen order ticket."""
    builder = ESCPOSBuilder(paper_format)
    printed_at = data.printed_at or datetime.now()

    builder.center().font_size(SIZE_DOUBLE_BOTH).bold()
    builder.line('** KOT **')
    builder.font_size(SIZE_NORMAL).bold(False).newline()

    _identifier_block(builder, _identifier(data.table_number, data.token_number, data.is_parcel))

    builder.left().dashed_line()
    builder.two_columns(f"KOT #: {format_kot_number(data.kot_number)}",
                        f"Bill: {data.bill_number}" if data.bill_number else '')
    builder.two_columns(f"Date: {printed_at:%d/%m/%Y}", f"Time: {printed_at:%I:%M %p}")
    builder.dashed_line()

    builder.bold().two_columns('ITEM', 'QTY').bold(False)
    builder.dashed_line()

    for index, item in enumerate(data.items, start=1):
        builder.two_columns(f"{index}. {item.display_name()}", f"x{item.quantity}")
        if item.notes:
            builder.line(f"   >> {item.notes}")

    builder.dashed_line()
    builder.center().bold().line(f"TOTAL ITEMS: {data.total_quantity}").bold(False)

    builder.newline().feed(3).partial_cut()
    return builder.build()


def generate_bill_commands(data: BillPayload, paper_format: str = '80mm',
                           currency_symbol: str = '') -> bytes:
    """Build a customer bill. All amounts are printed exactly as supplied."""
    builder = ESCPOSBuilder(paper_format)
    printed_at = data.printed_at or datetime.now()

    def total_row(label: str, amount: float):
        builder.two_columns(label, format_money(amount, currency_symbol))

    # Header
    builder.solid_line()
    builder.center().bold().line((data.restaurant_name or 'RESTAURANT').upper()).bold(False)
    if data.address:
        for part in data.address.split(','):
            if part.strip():
                builder.line(part.strip())
    if data.phone:
        builder.line(f"Mobile : {data.phone}")
    if data.is_reprint:
        builder.bold().line('** DUPLICATE **').bold(False)

    _identifier_block(builder, _identifier(data.table_number, data.token_number, data.is_parcel))

    builder.left().bold()
    builder.two_columns(f"Bill No: {data.bill_number.split('-')[-1]}", f"Date: {printed_at:%d/%m/%Y}")
    builder.bold(False)
    if data.customer_name:
        builder.line(f"Customer: {data.customer_name}")
    builder.solid_line()

    # Items
    builder.bold().four_columns('Desc', 'QTY', 'Rate', 'Amount').bold(False)
    builder.dotted_line()
    for item in data.items:
        builder.four_columns(
            item.display_name().upper(),
            str(item.quantity),
            f"{item.unit_price:.2f}",
            f"{item.amount:.2f}",
        )
        if item.notes:
            builder.line(f"  {item.notes}")
    builder.dotted_line()

    # Totals
    total_row('Sub Total', data.sub_total)
    if data.discount_amount > 0:
        if data.discount_type == 'percentage' and data.discount_value is not None:
            label = f"Discount ({_format_rate(float(data.discount_value))}%)"
        else:
            label = 'Discount'
        total_row(label, -data.discount_amount)

    if data.show_gst and (data.cgst_amount or data.sgst_amount):
        rate = data.gst_rate
        if data.gst_mode == 'igst':
            label = f"IGST @ {_format_rate(rate)}%" if rate else 'IGST'
            total_row(label, data.cgst_amount + data.sgst_amount)
        else:
            half = f" @ {_format_rate(rate / 2)}%" if rate else ''
            total_row(f"CGST{half}", data.cgst_amount)
            total_row(f"SGST{half}", data.sgst_amount)

    expected = data.sub_total - data.discount_amount + data.cgst_amount + data.sgst_amount
    round_off = data.final_amount - expected
    if abs(round_off) >= 0.01:
        total_row('Round Off', round_off)

    builder.solid_line()
    builder.bold()
    total_row('NET AMOUNT', data.final_amount)
    builder.bold(False)

    if data.payment_method:
        builder.two_columns('Paid by', data.payment_method.upper())
    if data.loyalty_points_used:
        builder.two_columns('Points redeemed', str(data.loyalty_points_used))
    if data.loyalty_points_earned:
        builder.two_columns('Points earned', str(data.loyalty_points_earned))
    builder.solid_line()

    # Footer
    builder.center()
    if data.fssai_number:
        builder.line(f"FSSAI LIC No : {data.fssai_number}")
    if data.gstin:
        builder.line(f"GSTIN : {data.gstin}")
    builder.line('THANK YOU FOR YOUR VISIT')
    builder.solid_line()

    builder.feed(4).partial_cut()
    return builder.build()
