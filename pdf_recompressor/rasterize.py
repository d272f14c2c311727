"""
rasterize.py - PDF page to pixel buffer conversion using PyMuPDF.

Two render modes:
- rasterize_page: uniform downscale of both axes (main recompression path)
- subsample_page: width-only subsampling, height kept at 1 px per point

Both paint an opaque white background first and composite the page on top,
so transparent pages never leak transparency into the lossy output.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import cv2
import numpy as np
import fitz  # pip install pymupdf

from .errors import RasterizationError

logger = logging.getLogger(__name__)

# MuPDF calls are serialized across worker threads; encoding is not
RENDER_LOCK = threading.RLock()


@dataclass
class PixelBuffer:
    """RGB (or grayscale) pixels owned by one page's processing."""
    pixels: Optional[np.ndarray]

    @property
    def width(self) -> int:
        return 0 if self.pixels is None else int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.pixels is None else int(self.pixels.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.pixels is None or self.pixels.size == 0

    def release(self):
        """Drop the pixel data so it can be freed."""
        self.pixels = None


def get_page_dimensions(page) -> Tuple[float, float]:
    """Get page dimensions in PDF points (1/72 inch)."""
    with RENDER_LOCK:
        rect = page.rect
    return float(rect.width), float(rect.height)


def _resolve_key(doc, xref: int, key: str) -> Tuple[str, str]:
    kind, value = doc.xref_get_key(xref, key)
    if kind == "xref":
        return "array", doc.xref_object(int(value.split()[0]), compressed=True)
    return kind, value


def get_declared_box(page) -> Optional[Tuple[float, float]]:
    """
    Width and height of the page's /MediaBox as written in the file.

    MuPDF substitutes a Letter-sized box when /MediaBox is empty, so
    page.rect alone cannot tell a zero-area page apart. Follows /Parent
    inheritance; None when the page is not backed by a PDF object.
    """
    doc = getattr(page, "parent", None)
    if doc is None or not getattr(doc, "is_pdf", False):
        return None

    with RENDER_LOCK:
        xref = page.xref
        seen = set()
        while xref and xref not in seen:
            seen.add(xref)
            kind, value = _resolve_key(doc, xref, "MediaBox")
            if kind == "array":
                try:
                    x0, y0, x1, y1 = (float(v) for v in value.strip().strip("[]").split())
                except ValueError:
                    return 0.0, 0.0  # malformed box
                return abs(x1 - x0), abs(y1 - y0)

            kind, value = doc.xref_get_key(xref, "Parent")
            if kind != "xref":
                break
            xref = int(value.split()[0])

    return None


def target_size(
    page_width_pts: float,
    page_height_pts: float,
    scale_x: float,
    scale_y: float
) -> Tuple[int, int]:
    """Pixel size of a page rendered at the given per-axis scale."""
    return int(round(page_width_pts * scale_x)), int(round(page_height_pts * scale_y))


def composite_on_white(rgba: np.ndarray) -> np.ndarray:
    """
    Flatten a premultiplied RGBA render onto an opaque white canvas.

    MuPDF alpha pixmaps are premultiplied, so white shows through as
    (255 - alpha) on every channel.
    """
    canvas = np.full(rgba.shape[:2] + (3,), 255, dtype=np.uint16)
    alpha = rgba[:, :, 3].astype(np.uint16)
    canvas -= alpha[:, :, None]
    canvas += rgba[:, :, :3]
    return np.clip(canvas, 0, 255).astype(np.uint8)


def _render(page, scale_x: float, scale_y: float, mode: str) -> PixelBuffer:
    try:
        declared = get_declared_box(page)
    except Exception as e:
        raise RasterizationError(f"Could not read page box: {e}") from e
    if declared is not None and (declared[0] <= 0 or declared[1] <= 0):
        raise RasterizationError(
            f"Page has no area: /MediaBox is {declared[0]}x{declared[1]} pts"
        )

    page_width_pts, page_height_pts = get_page_dimensions(page)

    if page_width_pts <= 0 or page_height_pts <= 0:
        raise RasterizationError(
            f"Page has no area: {page_width_pts}x{page_height_pts} pts"
        )
    if scale_x <= 0 or scale_y <= 0:
        raise RasterizationError(f"Invalid scale {scale_x}x{scale_y}")

    width, height = target_size(page_width_pts, page_height_pts, scale_x, scale_y)
    if width < 1 or height < 1:
        raise RasterizationError(
            f"Target size {width}x{height} px is empty at scale {scale_x}x{scale_y}"
        )

    # Page space -> pixel space. MuPDF's page space already has a top-left
    # origin (its page transformation matrix does the y flip), so the render
    # matrix only carries the scale, snapped so the pixmap hits the target.
    matrix = fitz.Matrix(width / page_width_pts, height / page_height_pts)

    try:
        with RENDER_LOCK:
            pixmap = page.get_pixmap(matrix=matrix, alpha=True)
            rgba = np.frombuffer(pixmap.samples, dtype=np.uint8).reshape(
                pixmap.height, pixmap.width, pixmap.n
            )
            pixmap = None
        pixels = composite_on_white(rgba)
    except Exception as e:
        raise RasterizationError(
            f"Could not render {width}x{height} px buffer: {e}"
        ) from e

    if pixels.shape[1] != width or pixels.shape[0] != height:
        pixels = cv2.resize(pixels, (width, height), interpolation=cv2.INTER_AREA)

    logger.debug(
        f"Rasterized {page_width_pts:.0f}x{page_height_pts:.0f} pts page "
        f"to {width}x{height} px ({mode})"
    )

    return PixelBuffer(pixels=pixels)


def rasterize_page(page, scale: float) -> PixelBuffer:
    """
    Render a page with both axes scaled by `scale`.

    Args:
        page: PyMuPDF page (anything with .rect and .get_pixmap)
        scale: Pixels per point, applied to width and height

    Returns:
        PixelBuffer of round(w*scale) x round(h*scale) RGB pixels

    Raises:
        RasterizationError: zero-area page, bad scale, or render failure
    """
    return _render(page, scale, scale, mode="uniform")


def subsample_page(page, scale: float) -> PixelBuffer:
    """Render a page with only the width scaled by `scale`."""
    return _render(page, scale, 1.0, mode="width-only")


@contextmanager
def rasterized(page, scale: float, width_only: bool = False) -> Iterator[PixelBuffer]:
    """Rasterize a page and release its buffer when the block exits."""
    render = subsample_page if width_only else rasterize_page
    buffer = render(page, scale)
    try:
        yield buffer
    finally:
        buffer.release()
