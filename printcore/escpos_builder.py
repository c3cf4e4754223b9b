# ESC/POS Builder - command encoder for thermal receipt printers
# Serializes text, layout and paper-handling operations into a byte stream

import logging
from typing import List, Optional

from .models import PAPER_WIDTHS, normalize_paper_format

logger = logging.getLogger(__name__)


ESC = 0x1B
GS = 0x1D
LF = 0x0A

# Alignment (ESC a n)
ALIGN_LEFT = 0
ALIGN_CENTER = 1
ALIGN_RIGHT = 2

# Character size (GS ! n)
SIZE_NORMAL = 0x00
SIZE_DOUBLE_HEIGHT = 0x10
SIZE_DOUBLE_WIDTH = 0x20
SIZE_DOUBLE_BOTH = 0x30

# Fixed column widths for Desc/Qty/Rate/Amount rows; widths + 3 separators == chars
FOUR_COLUMN_WIDTHS = {
    '58mm': (12, 4, 6, 7),
    '76mm': (19, 4, 8, 8),
    '80mm': (22, 5, 9, 9),
}


def wrap_text(text: str, width: int) -> List[str]:
    """Word-wrap text to width columns. Words longer than a line are split."""
    if width <= 0:
        return [text]
    lines = []
    current = ''
    for word in text.split(' '):
        while len(word) > width:
            if current:
                lines.append(current)
                current = ''
            lines.append(word[:width])
            word = word[width:]
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= width:
            current += ' ' + word
        else:
            lines.append(current)
            current = word
    if current or not lines:
        lines.append(current)
    return lines


def center_text(text: str, width: int) -> str:
    pad = max(0, width - len(text))
    left = pad // 2
    return ' ' * left + text + ' ' * (pad - left)


class ESCPOSBuilder:
    """Chainable ESC/POS command builder.

    Every operation appends bytes and returns the builder. Text operations
    wrap to the paper's column count; column rows right-truncate the left
    column so the right-hand columns never shift.
    """

    def __init__(self, paper_format: str = '80mm', encoding: str = 'utf-8',
                 initialize: bool = True):
        self.paper_format = normalize_paper_format(paper_format)
        self.encoding = encoding
        self._chars = PAPER_WIDTHS[self.paper_format]['chars']
        self._width_multiplier = 1
        self._buffer = bytearray()
        if initialize:
            self.initialize()

    @property
    def chars_per_line(self) -> int:
        """Columns available at the current character width."""
        return self._chars // self._width_multiplier

    def _push(self, *values: int) -> 'ESCPOSBuilder':
        self._buffer.extend(values)
        return self

    def raw(self, data: bytes) -> 'ESCPOSBuilder':
        self._buffer.extend(data)
        return self

    def initialize(self) -> 'ESCPOSBuilder':
        self._width_multiplier = 1
        return self._push(ESC, 0x40).reset_line_spacing()

    def align(self, alignment: int) -> 'ESCPOSBuilder':
        if alignment not in (ALIGN_LEFT, ALIGN_CENTER, ALIGN_RIGHT):
            raise ValueError(f"Invalid alignment: {alignment}")
        return self._push(ESC, 0x61, alignment)

    def left(self) -> 'ESCPOSBuilder':
        return self.align(ALIGN_LEFT)

    def center(self) -> 'ESCPOSBuilder':
        return self.align(ALIGN_CENTER)

    def right(self) -> 'ESCPOSBuilder':
        return self.align(ALIGN_RIGHT)

    def bold(self, on: bool = True) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x45, 1 if on else 0)

    def underline(self, on: bool = True) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x2D, 1 if on else 0)

    def inverse(self, on: bool = True) -> 'ESCPOSBuilder':
        return self._push(GS, 0x42, 1 if on else 0)

    def font_size(self, size: int) -> 'ESCPOSBuilder':
        self._width_multiplier = 2 if size & SIZE_DOUBLE_WIDTH else 1
        return self._push(GS, 0x21, size)

    def text(self, value: str) -> 'ESCPOSBuilder':
        """Append text with no line feed and no wrapping."""
        self._buffer.extend(value.encode(self.encoding, errors='replace'))
        return self

    def newline(self, count: int = 1) -> 'ESCPOSBuilder':
        for _ in range(count):
            self._buffer.append(LF)
        return self

    def line(self, value: str = '', wrap: bool = True) -> 'ESCPOSBuilder':
        """Emit one logical line, wrapped (or right-truncated) to the paper width."""
        width = self.chars_per_line
        if len(value) <= width:
            return self.text(value).newline()
        if not wrap:
            return self.text(value[:width]).newline()
        for part in wrap_text(value, width):
            self.text(part).newline()
        return self

    def horizontal_line(self, char: str = '-') -> 'ESCPOSBuilder':
        return self.line(char * self.chars_per_line)

    def dashed_line(self) -> 'ESCPOSBuilder':
        return self.horizontal_line('-')

    def dotted_line(self) -> 'ESCPOSBuilder':
        return self.horizontal_line('.')

    def double_line(self) -> 'ESCPOSBuilder':
        return self.horizontal_line('=')

    def solid_line(self) -> 'ESCPOSBuilder':
        return self.horizontal_line('_')

    def right_dotted_line(self, width: int = 16) -> 'ESCPOSBuilder':
        width = min(width, self.chars_per_line)
        return self.line(' ' * (self.chars_per_line - width) + '.' * width)

    def box_line(self) -> 'ESCPOSBuilder':
        return self.line('+' + '-' * (self.chars_per_line - 2) + '+')

    def box_row(self, value: str) -> 'ESCPOSBuilder':
        inner = self.chars_per_line - 2
        return self.line('|' + center_text(value[:inner], inner) + '|')

    def boxed(self, value: str) -> 'ESCPOSBuilder':
        return self.box_line().box_row(value).box_line()

    def two_columns(self, left: str, right: str) -> 'ESCPOSBuilder':
        width = self.chars_per_line
        right = right[:width]
        left = left[:max(0, width - len(right) - 1)]
        spaces = max(1, width - len(left) - len(right)) if right else 0
        return self.line(left + ' ' * spaces + right, wrap=False)

    def three_columns(self, left: str, middle: str, right: str) -> 'ESCPOSBuilder':
        width = self.chars_per_line
        left = left[:max(0, width - len(middle) - len(right) - 2)]
        spaces = max(2, width - len(left) - len(middle) - len(right))
        left_spaces = spaces // 2
        return self.line(
            left + ' ' * left_spaces + middle + ' ' * (spaces - left_spaces) + right,
            wrap=False,
        )

    def four_columns(self, col1: str, col2: str, col3: str, col4: str) -> 'ESCPOSBuilder':
        widths = FOUR_COLUMN_WIDTHS[self.paper_format]
        row = ' '.join([
            col1[:widths[0]].ljust(widths[0]),
            col2[:widths[1]].rjust(widths[1]),
            col3[:widths[2]].rjust(widths[2]),
            col4[:widths[3]].rjust(widths[3]),
        ])
        return self.line(row, wrap=False)

    def feed(self, lines: int = 3) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x64, max(0, min(lines, 255)))

    def cut(self, partial: bool = False) -> 'ESCPOSBuilder':
        return self._push(GS, 0x56, 0x01 if partial else 0x00)

    def partial_cut(self) -> 'ESCPOSBuilder':
        return self.cut(partial=True)

    def open_cash_drawer(self, pin: int = 0) -> 'ESCPOSBuilder':
        # ESC p m t1 t2: 25 x 2ms on, 250 x 2ms off
        return self._push(ESC, 0x70, pin, 0x19, 0xFA)

    def set_line_spacing(self, dots: int) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x33, max(0, min(dots, 255)))

    def reset_line_spacing(self) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x32)

    def beep(self, times: int = 1, duration_ms: int = 100) -> 'ESCPOSBuilder':
        return self._push(ESC, 0x42, times, max(1, duration_ms // 50))

    def reset(self) -> 'ESCPOSBuilder':
        """Discard everything built so far and start over."""
        self._buffer = bytearray()
        return self.initialize()

    def build(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)


def build_test_page(printer_name: str, transport: str, paper_format: str,
                    role: str, business_name: Optional[str] = None,
                    timestamp: Optional[str] = None) -> bytes:
    """Fixed diagnostic page: printer identity plus a character-set sample."""
    builder = ESCPOSBuilder(paper_format)
    builder.center().bold().line('*** TEST PRINT ***').bold(False).newline()
    if business_name:
        builder.line(business_name)
    builder.line(f"Printer: {printer_name}")
    builder.line(f"Type: {transport.upper()}")
    builder.line(f"Format: {builder.paper_format}")
    builder.line(f"Role: {role}")
    builder.dashed_line()
    if timestamp:
        builder.line(timestamp)
        builder.dashed_line()
    builder.line('1234567890')
    builder.line('ABCDEFGHIJ')
    builder.line('abcdefghij')
    builder.line('!@#$%^&*()')
    builder.dashed_line()
    builder.line('Print Test Successful!')
    builder.feed(4).partial_cut()
    return builder.build()
