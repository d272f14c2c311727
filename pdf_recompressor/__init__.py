"""
PDF Recompressor - shrink PDFs by turning every page into one JPEG.

Each page is rasterized at a tier-dependent scale, re-encoded as a lossy
JPEG and wrapped back into a page of the original size.
"""

from .errors import (
    RecompressionError,
    ParseError,
    RasterizationError,
    EncodeError,
    SerializeError,
)
from .policy import CompressionQuality, SizeClass, parameters_for, select_tier
from .pipeline import (
    BATCH_SIZE,
    RecompressionResult,
    recompress,
    recompress_pdf,
    recompress_file,
    recompress_in_background,
    subsample_pdf,
)

__version__ = "1.0.0"

__all__ = [
    "recompress",
    "recompress_pdf",
    "recompress_file",
    "recompress_in_background",
    "subsample_pdf",
    "RecompressionResult",
    "BATCH_SIZE",
    "CompressionQuality",
    "SizeClass",
    "parameters_for",
    "select_tier",
    "RecompressionError",
    "ParseError",
    "RasterizationError",
    "EncodeError",
    "SerializeError",
]
