# Models - value objects shared by the encoder, formatters and dispatcher
# Printer descriptors, ticket/bill payloads and print results

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


# Paper format -> character columns and printable dot width
PAPER_WIDTHS = {
    '58mm': {'chars': 32, 'dots': 384},
    '76mm': {'chars': 42, 'dots': 512},
    '80mm': {'chars': 48, 'dots': 576},
}
DEFAULT_PAPER_FORMAT = '80mm'

PRINTER_ROLES = ('kitchen', 'bar', 'counter')
DIRECT_TRANSPORTS = ('usb', 'bluetooth')

# Portions that do not get a "(portion)" suffix on tickets
DEFAULT_PORTIONS = ('', 'single', 'regular', 'full')


def normalize_paper_format(paper_format: Optional[str]) -> str:
    """Map any configured format to a known thermal width (unknown -> 80mm)."""
    if paper_format in PAPER_WIDTHS:
        return paper_format
    return DEFAULT_PAPER_FORMAT


def chars_per_line(paper_format: Optional[str]) -> int:
    return PAPER_WIDTHS[normalize_paper_format(paper_format)]['chars']


def _pick(data: Dict[str, Any], *keys, default=None):
    """First present key wins; payloads arrive in snake_case or camelCase."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class PrinterDescriptor:
    """A configured printer. Supplied by the settings store, read-only here."""
    name: str
    role: str = 'counter'
    transport: str = 'usb'  # 'usb' | 'bluetooth' | 'network'
    paper_format: str = DEFAULT_PAPER_FORMAT
    id: Optional[str] = None
    address: Optional[str] = None  # IP for network, serial/RFCOMM port for bluetooth
    port: int = 9100
    vendor_id: Optional[int] = None
    product_id: Optional[int] = None

    @property
    def key(self) -> str:
        return self.id or self.name

    @property
    def is_direct(self) -> bool:
        return self.transport in DIRECT_TRANSPORTS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PrinterDescriptor':
        return cls(
            name=_pick(data, 'name', default='Printer'),
            role=_pick(data, 'role', default='counter'),
            transport=_pick(data, 'transport', 'type', default='usb'),
            paper_format=_pick(data, 'paper_format', 'paperFormat', 'format',
                               default=DEFAULT_PAPER_FORMAT),
            id=_pick(data, 'id'),
            address=_pick(data, 'address', 'ip_address', 'ipAddress', 'host'),
            port=int(_pick(data, 'port', default=9100)),
            vendor_id=_pick(data, 'vendor_id', 'vendorId'),
            product_id=_pick(data, 'product_id', 'productId'),
        )


@dataclass(frozen=True)
class TicketItem:
    """One ordered line item"""
    name: str
    quantity: int
    unit_price: float = 0.0
    portion: Optional[str] = None
    notes: Optional[str] = None

    @property
    def amount(self) -> float:
        return self.unit_price * self.quantity

    @property
    def has_portion_suffix(self) -> bool:
        return bool(self.portion) and self.portion.strip().lower() not in DEFAULT_PORTIONS

    def display_name(self) -> str:
        if self.has_portion_suffix:
            return f"{self.name} ({self.portion})"
        return self.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TicketItem':
        return cls(
            name=str(_pick(data, 'name', 'product_name', 'productName', default='')),
            quantity=int(_pick(data, 'quantity', 'qty', default=1)),
            unit_price=float(_pick(data, 'unit_price', 'unitPrice', 'price', default=0.0)),
            portion=_pick(data, 'portion'),
            notes=_pick(data, 'notes', 'note'),
        )


def _items(data: Dict[str, Any]) -> Tuple[TicketItem, ...]:
    return tuple(TicketItem.from_dict(i) for i in data.get('items') or [])


def _payload_dict(payload) -> Dict[str, Any]:
    """JSON-ready dict that from_dict reads back"""
    data = asdict(payload)
    data['items'] = list(data['items'])
    if data.get('printed_at') is not None:
        data['printed_at'] = data['printed_at'].isoformat()
    return data


@dataclass(frozen=True)
class KOTPayload:
    """Kitchen order ticket contents"""
    items: Tuple[TicketItem, ...]
    table_number: Optional[str] = None
    token_number: Optional[int] = None
    kot_number: Optional[str] = None
    bill_number: Optional[str] = None
    is_parcel: bool = False
    printed_at: Optional[datetime] = None

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KOTPayload':
        kot_number = _pick(data, 'kot_number', 'kotNumberFormatted', 'kotNumber')
        table = _pick(data, 'table_number', 'tableNumber', 'table')
        return cls(
            items=_items(data),
            table_number=str(table) if table is not None else None,
            token_number=_pick(data, 'token_number', 'tokenNumber'),
            kot_number=str(kot_number) if kot_number is not None else None,
            bill_number=_pick(data, 'bill_number', 'billNumber'),
            is_parcel=bool(_pick(data, 'is_parcel', 'isParcel', default=False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _payload_dict(self)


@dataclass(frozen=True)
class BillPayload:
    """Customer bill contents. Amounts are printed as given, never recomputed."""
    bill_number: str
    items: Tuple[TicketItem, ...]
    sub_total: float
    final_amount: float
    cgst_amount: float = 0.0
    sgst_amount: float = 0.0
    discount_amount: float = 0.0
    discount_type: Optional[str] = None  # 'percentage' | 'fixed'
    discount_value: Optional[float] = None
    gst_mode: str = 'cgst_sgst'  # 'cgst_sgst' | 'igst'
    gst_rate: Optional[float] = None
    show_gst: bool = True
    table_number: Optional[str] = None
    token_number: Optional[int] = None
    is_parcel: bool = False
    payment_method: Optional[str] = None
    restaurant_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    gstin: Optional[str] = None
    fssai_number: Optional[str] = None
    customer_name: Optional[str] = None
    loyalty_points_used: Optional[int] = None
    loyalty_points_earned: Optional[int] = None
    is_reprint: bool = False
    printed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BillPayload':
        table = _pick(data, 'table_number', 'tableNumber', 'table')
        return cls(
            bill_number=str(_pick(data, 'bill_number', 'billNumber', default='')),
            items=_items(data),
            sub_total=float(_pick(data, 'sub_total', 'subTotal', 'subtotal', default=0.0)),
            final_amount=float(_pick(data, 'final_amount', 'finalAmount', 'total', default=0.0)),
            cgst_amount=float(_pick(data, 'cgst_amount', 'cgstAmount', default=0.0)),
            sgst_amount=float(_pick(data, 'sgst_amount', 'sgstAmount', default=0.0)),
            discount_amount=float(_pick(data, 'discount_amount', 'discountAmount', default=0.0)),
            discount_type=_pick(data, 'discount_type', 'discountType'),
            discount_value=_pick(data, 'discount_value', 'discountValue'),
            gst_mode=_pick(data, 'gst_mode', 'gstMode', default='cgst_sgst'),
            gst_rate=_pick(data, 'gst_rate', 'gstRate'),
            show_gst=bool(_pick(data, 'show_gst', 'showGST', default=True)),
            table_number=str(table) if table is not None else None,
            token_number=_pick(data, 'token_number', 'tokenNumber'),
            is_parcel=bool(_pick(data, 'is_parcel', 'isParcel', default=False)),
            payment_method=_pick(data, 'payment_method', 'paymentMethod'),
            restaurant_name=_pick(data, 'restaurant_name', 'restaurantName', 'businessName'),
            address=_pick(data, 'address', 'businessAddress'),
            phone=_pick(data, 'phone', 'businessPhone'),
            gstin=_pick(data, 'gstin', 'gstNumber'),
            fssai_number=_pick(data, 'fssai_number', 'fssaiNumber'),
            customer_name=_pick(data, 'customer_name', 'customerName'),
            loyalty_points_used=_pick(data, 'loyalty_points_used', 'loyaltyPointsUsed'),
            loyalty_points_earned=_pick(data, 'loyalty_points_earned', 'loyaltyPointsEarned'),
            is_reprint=bool(_pick(data, 'is_reprint', 'isReprint', default=False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _payload_dict(self)


@dataclass
class PrintResult:
    """Outcome of one print attempt: 'thermal', 'browser' or 'queue'."""
    success: bool
    method: str
    error: Optional[str] = None
    job_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'success': self.success, 'method': self.method}
        if self.error is not None:
            result['error'] = self.error
        if self.job_id is not None:
            result['job_id'] = self.job_id
        return result
