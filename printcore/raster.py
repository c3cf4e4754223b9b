# Raster - monochrome bitmap encoding for ESC/POS GS v 0
# Converts a rendered RGBA surface into a packed-bit raster print job

import logging
import math
from typing import Dict, Optional, Union

from PIL import Image

from .models import PAPER_WIDTHS, normalize_paper_format

logger = logging.getLogger(__name__)


INK_THRESHOLD = 128
MAX_DIMENSION = 0xFFFF

RESET = b'\x1b\x40'
RASTER_HEADER = b'\x1d\x76\x30\x00'  # GS v 0, normal density
FEED_AND_CUT = b'\x1b\x64\x04' + b'\x1d\x56\x01'


class RasterError(ValueError):
    """The surface cannot be rasterized (empty or malformed)."""


def luminance(r: int, g: int, b: int) -> int:
    """0.299R + 0.587G + 0.114B, floored; integer math keeps grays exact."""
    return (299 * r + 587 * g + 114 * b) // 1000


def _rgba_bytes(surface: Union[Image.Image, bytes, bytearray],
                width: Optional[int], height: Optional[int]):
    if isinstance(surface, Image.Image):
        if surface.width == 0 or surface.height == 0:
            raise RasterError("Cannot rasterize an empty image")
        rgba = surface.convert('RGBA')
        return rgba.tobytes(), rgba.width, rgba.height

    if width is None or height is None:
        raise RasterError("Raw RGBA data requires width and height")
    if width <= 0 or height <= 0:
        raise RasterError(f"Invalid surface size {width}x{height}")
    data = bytes(surface)
    if len(data) != width * height * 4:
        raise RasterError(
            f"RGBA data length {len(data)} does not match {width}x{height}"
        )
    return data, width, height


def pack_bitmap(rgba: bytes, width: int, height: int,
                threshold: int = INK_THRESHOLD) -> bytes:
    """Pack pixels 8 per byte, MSB first; row padding bits stay blank."""
    bytes_per_row = math.ceil(width / 8)
    packed = bytearray(bytes_per_row * height)
    for y in range(height):
        row_offset = y * width * 4
        out_offset = y * bytes_per_row
        for x in range(width):
            i = row_offset + x * 4
            if luminance(rgba[i], rgba[i + 1], rgba[i + 2]) < threshold:
                packed[out_offset + (x >> 3)] |= 0x80 >> (x & 7)
    return bytes(packed)


def raster_header(width: int, height: int) -> bytes:
    bytes_per_row = math.ceil(width / 8)
    if bytes_per_row > MAX_DIMENSION or height > MAX_DIMENSION:
        raise RasterError(f"Surface too large for raster header: {width}x{height}")
    return RASTER_HEADER + bytes([
        bytes_per_row & 0xFF, (bytes_per_row >> 8) & 0xFF,
        height & 0xFF, (height >> 8) & 0xFF,
    ])


def image_to_raster(surface: Union[Image.Image, bytes, bytearray],
                    width: Optional[int] = None, height: Optional[int] = None,
                    threshold: int = INK_THRESHOLD) -> bytes:
    """Encode a surface as reset + GS v 0 header + bitmap + feed/cut.

    `surface` is a Pillow image or raw RGBA bytes (then width/height are
    required). Raises RasterError before producing any output if the
    surface is unusable.
    """
    rgba, width, height = _rgba_bytes(surface, width, height)
    header = raster_header(width, height)
    body = pack_bitmap(rgba, width, height, threshold)
    logger.debug("Rasterized %dx%d surface into %d bytes", width, height, len(body))
    return RESET + header + body + FEED_AND_CUT


def fit_to_paper(image: Image.Image, paper_format: str = '80mm') -> Image.Image:
    """Scale an image down to the printable dot width of the paper."""
    max_width = PAPER_WIDTHS[normalize_paper_format(paper_format)]['dots']
    if image.width <= max_width:
        return image
    height = max(1, round(image.height * max_width / image.width))
    return image.resize((max_width, height), Image.LANCZOS)


def bitmap_stats(surface: Union[Image.Image, bytes, bytearray],
                 width: Optional[int] = None, height: Optional[int] = None,
                 threshold: int = INK_THRESHOLD) -> Dict[str, float]:
    rgba, width, height = _rgba_bytes(surface, width, height)
    ink = sum(
        1 for i in range(0, len(rgba), 4)
        if luminance(rgba[i], rgba[i + 1], rgba[i + 2]) < threshold
    )
    total = width * height
    return {
        'width': width,
        'height': height,
        'ink_pixels': ink,
        'blank_pixels': total - ink,
        'ink_percentage': ink * 100.0 / total,
    }
