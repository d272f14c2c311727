"""
page_compressor.py - One page: rasterize -> encode -> wrap.

Failures on a page never raise out of here. They come back as a
PageResult with success=False so the document keeps going.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from .compression import CompressedPage, decode_jpeg, encode_jpeg, encode_lossless
from .errors import EncodeError, RasterizationError
from .policy import CompressionQuality, parameters_for
from .rasterize import get_page_dimensions, rasterized

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """Outcome of processing one page: a compressed page or a skip."""
    page_num: int
    success: bool
    page: Optional[CompressedPage] = None
    error: Optional[str] = None
    process_time: float = 0.0
    compressed_size: int = 0
    is_color: bool = False

    @property
    def skipped(self) -> bool:
        return not self.success


def _skip(page_num: int, start: float, error: Exception) -> PageResult:
    logger.warning(f"Page {page_num} skipped: {error}")
    return PageResult(
        page_num=page_num,
        success=False,
        error=str(error),
        process_time=time.time() - start
    )


def _done(page_num: int, start: float, compressed: CompressedPage) -> PageResult:
    return PageResult(
        page_num=page_num,
        success=True,
        page=compressed,
        process_time=time.time() - start,
        compressed_size=compressed.total_size,
        is_color=compressed.is_color
    )


def compress_page(
    page,
    tier: Union[CompressionQuality, str],
    page_num: int = 0,
    detect_grayscale: bool = True
) -> PageResult:
    """
    Rasterize a page at the tier's scale and re-encode it as JPEG.

    The wrapped page keeps the source page's size in points; the image's
    pixel size divided by the tier scale maps back onto it.
    """
    start = time.time()
    scale, quality = parameters_for(tier)

    try:
        page_width_pts, page_height_pts = get_page_dimensions(page)

        with rasterized(page, scale) as buffer:
            encoded = encode_jpeg(buffer, quality, detect_grayscale=detect_grayscale)

        # The stream must decode before it goes into a page
        check = decode_jpeg(encoded.data)
        decoded_size = (check.width, check.height)
        check.release()
        if decoded_size != (encoded.width, encoded.height):
            raise EncodeError(
                f"Decoded size {decoded_size[0]}x{decoded_size[1]} does not match "
                f"declared {encoded.width}x{encoded.height}"
            )
    except (RasterizationError, EncodeError) as e:
        return _skip(page_num, start, e)

    compressed = CompressedPage.from_encoded(
        encoded, page_num, page_width_pts, page_height_pts
    )

    logger.info(
        f"Page {page_num}: {compressed.total_size:,} bytes | "
        f"{compressed.width}x{compressed.height} | color={compressed.is_color} | "
        f"scale={scale} q={quality}"
    )

    return _done(page_num, start, compressed)


def subsample_page_result(page, scale: float, page_num: int = 0) -> PageResult:
    """Width-only subsampling of one page, stored losslessly."""
    start = time.time()

    try:
        page_width_pts, page_height_pts = get_page_dimensions(page)

        with rasterized(page, scale, width_only=True) as buffer:
            encoded = encode_lossless(buffer)
    except (RasterizationError, EncodeError) as e:
        return _skip(page_num, start, e)

    compressed = CompressedPage.from_encoded(
        encoded, page_num, page_width_pts, page_height_pts
    )

    logger.info(
        f"Page {page_num}: {compressed.total_size:,} bytes | "
        f"{compressed.width}x{compressed.height} | width-only scale={scale:.3f}"
    )

    return _done(page_num, start, compressed)
