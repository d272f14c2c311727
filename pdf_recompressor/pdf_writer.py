"""
pdf_writer.py - PDF assembly from compressed pages.

Supports:
- JPEG images (DCTDecode)
- Raw 8-bit images (FlateDecode)

Each page is exactly one image scaled to fill the page. Pages are kept in
source-index order: a skipped source page leaves a gap in the index
sequence rather than renumbering the pages after it.
"""

import bisect
import io
import logging
from pathlib import Path
from typing import List, Optional

import pikepdf
from pikepdf import Pdf, Stream, Dictionary, Name, Array

from .compression import CompressedPage, FLATE_DECODE
from .errors import SerializeError

logger = logging.getLogger(__name__)


class PDFWriter:
    """
    Assembles compressed pages into a minimal PDF.

    Each page contains exactly one image. No text layers, no masks.
    """

    def __init__(self):
        self.pdf = Pdf.new()
        self.page_sizes: List[int] = []
        self.page_indexes: List[int] = []
        self.title: Optional[str] = None

    def __len__(self) -> int:
        return len(self.page_indexes)

    def set_title(self, title: Optional[str]):
        self.title = title or None

    def _image_stream(self, compressed: CompressedPage) -> Stream:
        colorspace = Name.DeviceRGB if compressed.is_color else Name.DeviceGray
        filter_name = Name.FlateDecode if compressed.filter == FLATE_DECODE else Name.DCTDecode

        image_dict = Dictionary({
            '/Type': Name.XObject,
            '/Subtype': Name.Image,
            '/Width': compressed.width,
            '/Height': compressed.height,
            '/ColorSpace': colorspace,
            '/BitsPerComponent': 8,
            '/Filter': filter_name,
        })
        return Stream(self.pdf, compressed.image_data, image_dict)

    def insert_page(self, compressed: CompressedPage, index: Optional[int] = None):
        """
        Add a one-image page for source page `index`.

        Defaults to the compressed page's own page_num. Inserting an index
        that is already present is an error.
        """
        if index is None:
            index = compressed.page_num
        if index < 0:
            raise ValueError(f"Page index must be non-negative, got {index}")
        if index in self.page_indexes:
            raise ValueError(f"Page {index} already inserted")

        width_pts = compressed.page_width_pts
        height_pts = compressed.page_height_pts

        xobjects = Dictionary({})
        xobjects['/Im0'] = self.pdf.make_indirect(self._image_stream(compressed))

        # Scale the unit image square to fill the page
        content = f"""
q
{width_pts:.4f} 0 0 {height_pts:.4f} 0 0 cm
/Im0 Do
Q
"""
        page_dict = Dictionary({
            '/Type': Name.Page,
            '/MediaBox': Array([0, 0, width_pts, height_pts]),
            '/Resources': Dictionary({'/XObject': xobjects}),
            '/Contents': self.pdf.make_indirect(
                Stream(self.pdf, content.strip().encode("latin-1"))
            ),
        })

        position = bisect.bisect_left(self.page_indexes, index)
        self.pdf.pages.insert(position, pikepdf.Page(self.pdf.make_indirect(page_dict)))
        self.page_indexes.insert(position, index)
        self.page_sizes.insert(position, compressed.total_size)

        mode = "color" if compressed.is_color else "gray"
        logger.debug(
            f"Inserted page {index} at position {position}: "
            f"{compressed.total_size:,} bytes ({mode}, {compressed.filter})"
        )

    def _write(self, target):
        if not self.page_indexes:
            raise SerializeError("No pages to write")

        if self.title:
            self.pdf.docinfo['/Title'] = self.title

        try:
            self.pdf.save(
                target,
                compress_streams=True,
                object_stream_mode=pikepdf.ObjectStreamMode.generate
            )
        except (pikepdf.PdfError, OSError, ValueError) as e:
            raise SerializeError(f"Could not write PDF: {e}") from e

    def to_bytes(self) -> bytes:
        """Serialize the assembled PDF."""
        out = io.BytesIO()
        self._write(out)
        data = out.getvalue()
        if not data:
            raise SerializeError("Serialized PDF is empty")

        logger.debug(f"Serialized {len(self)} pages to {len(data):,} bytes")
        return data

    def save(self, output_path: Path):
        """Save PDF to file."""
        output_path = Path(output_path)
        self._write(output_path)
        logger.info(f"Saved {len(self)} pages to {output_path}")

    def get_total_size(self) -> int:
        """Get total content size (before PDF overhead)."""
        return sum(self.page_sizes)

    def close(self):
        self.pdf.close()


def create_pdf(pages: List[CompressedPage], title: Optional[str] = None) -> bytes:
    """Create PDF bytes from compressed pages, ordered by page_num."""
    writer = PDFWriter()
    writer.set_title(title)
    try:
        for page in pages:
            writer.insert_page(page)
        return writer.to_bytes()
    finally:
        writer.close()
