"""
compression.py - Pixel buffer encoding.

Supports:
- JPEG (DCTDecode) for the lossy recompression path
- zlib raw samples (FlateDecode) for width-only subsampling
"""

import io
import logging
import math
import zlib
from dataclasses import dataclass

import numpy as np
from PIL import Image
import cv2

from .errors import EncodeError
from .rasterize import PixelBuffer

logger = logging.getLogger(__name__)

# Saturation threshold for grayscale conversion
# Only convert to grayscale if mean saturation is below this
GRAYSCALE_SATURATION_THRESHOLD = 10  # Out of 255

# zlib level for lossless page images
LOSSLESS_LEVEL = 9

DCT_DECODE = "DCTDecode"
FLATE_DECODE = "FlateDecode"


@dataclass
class EncodedImage:
    """Compressed image stream plus its declared pixel size."""
    data: bytes
    width: int
    height: int
    is_color: bool
    filter: str = DCT_DECODE

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class CompressedPage:
    """Compressed page data ready for PDF embedding."""
    page_num: int
    image_data: bytes
    width: int
    height: int
    page_width_pts: float
    page_height_pts: float
    is_color: bool
    filter: str = DCT_DECODE

    @property
    def total_size(self) -> int:
        return len(self.image_data)

    @classmethod
    def from_encoded(
        cls,
        encoded: "EncodedImage",
        page_num: int,
        page_width_pts: float,
        page_height_pts: float
    ) -> "CompressedPage":
        return cls(
            page_num=page_num,
            image_data=encoded.data,
            width=encoded.width,
            height=encoded.height,
            page_width_pts=page_width_pts,
            page_height_pts=page_height_pts,
            is_color=encoded.is_color,
            filter=encoded.filter
        )


def is_grayscale_image(image: np.ndarray) -> bool:
    """
    Check if image is effectively grayscale based on saturation.

    Only returns True if the entire page has very low saturation.
    """
    if len(image.shape) != 3 or image.shape[2] != 3:
        return True  # Already grayscale

    hsv = cv2.cvtColor(image, cv2.COLOR_RGB2HSV)
    mean_saturation = np.mean(hsv[:, :, 1])

    is_gray = mean_saturation < GRAYSCALE_SATURATION_THRESHOLD
    logger.debug(f"Mean saturation: {mean_saturation:.1f}, is_grayscale: {is_gray}")

    return is_gray


def jpeg_quality(quality: float) -> int:
    """Map a 0.0-1.0 quality fraction onto Pillow's 1-100 JPEG scale."""
    return max(1, min(100, int(round(quality * 100))))


def _check_buffer(buffer: PixelBuffer):
    if buffer is None or buffer.is_empty:
        raise EncodeError("Cannot encode an empty pixel buffer")


def _to_pil(image: np.ndarray, keep_color: bool) -> Image.Image:
    if len(image.shape) == 2:
        return Image.fromarray(image)
    if image.shape[2] == 4:
        image = image[:, :, :3]
    if not keep_color:
        return Image.fromarray(cv2.cvtColor(image, cv2.COLOR_RGB2GRAY))
    return Image.fromarray(np.ascontiguousarray(image))


def encode_jpeg(
    buffer: PixelBuffer,
    quality: float,
    detect_grayscale: bool = True
) -> EncodedImage:
    """
    Compress a pixel buffer as JPEG.

    Args:
        buffer: Rasterized page
        quality: 0.0 (smallest file) to 1.0 (highest fidelity)
        detect_grayscale: Encode effectively gray pages as 1-channel JPEG

    Returns:
        EncodedImage with JPEG bytes

    Raises:
        EncodeError: empty buffer, quality outside [0, 1], or encoder failure
    """
    _check_buffer(buffer)
    if isinstance(quality, bool) or not isinstance(quality, (int, float)) \
            or math.isnan(quality) or not 0.0 <= quality <= 1.0:
        raise EncodeError(f"JPEG quality must be within [0, 1], got {quality!r}")

    image = buffer.pixels
    q = jpeg_quality(quality)

    try:
        is_color = len(image.shape) == 3 and not (detect_grayscale and is_grayscale_image(image))
        img = _to_pil(image, keep_color=is_color)
        out = io.BytesIO()
        img.save(
            out,
            format="JPEG",
            quality=q,
            optimize=True,
            subsampling=2  # 4:2:0 chroma subsampling
        )
    except (OSError, ValueError, cv2.error, Image.DecompressionBombError) as e:
        raise EncodeError(f"JPEG encode failed: {e}") from e

    data = out.getvalue()
    if not data:
        raise EncodeError("JPEG encoder produced no data")

    return EncodedImage(
        data=data,
        width=img.width,
        height=img.height,
        is_color=is_color,
        filter=DCT_DECODE
    )


def encode_lossless(buffer: PixelBuffer) -> EncodedImage:
    """Compress raw 8-bit samples with zlib for FlateDecode embedding."""
    _check_buffer(buffer)

    image = buffer.pixels
    if len(image.shape) == 3 and image.shape[2] == 4:
        image = image[:, :, :3]
    is_color = len(image.shape) == 3

    data = zlib.compress(np.ascontiguousarray(image).tobytes(), level=LOSSLESS_LEVEL)
    return EncodedImage(
        data=data,
        width=int(image.shape[1]),
        height=int(image.shape[0]),
        is_color=is_color,
        filter=FLATE_DECODE
    )


def decode_jpeg(data: bytes) -> PixelBuffer:
    """
    Decode JPEG bytes back to pixels.

    Raises:
        EncodeError: if the stream is not a decodable JPEG
    """
    if not data:
        raise EncodeError("Cannot decode empty JPEG data")

    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format != "JPEG":
                raise EncodeError(f"Expected JPEG data, got {img.format}")
            img.load()
            pixels = np.array(img.convert("L" if img.mode == "L" else "RGB"))
    except EncodeError:
        raise
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise EncodeError(f"JPEG decode failed: {e}") from e

    return PixelBuffer(pixels=pixels)
