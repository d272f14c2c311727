import fitz
import numpy as np
import pytest

from pdf_recompressor.compression import CompressedPage, encode_jpeg
from pdf_recompressor.errors import SerializeError
from pdf_recompressor.pdf_writer import PDFWriter, create_pdf
from pdf_recompressor.rasterize import PixelBuffer


def jpeg_page(page_num, width_pts=200.0, height_pts=100.0):
    pixels = np.full((50, 100, 3), (200, 30, 30), dtype=np.uint8)
    encoded = encode_jpeg(PixelBuffer(pixels), 0.5)
    return CompressedPage.from_encoded(encoded, page_num, width_pts, height_pts)


def test_pages_follow_source_index_order():
    writer = PDFWriter()
    writer.insert_page(jpeg_page(2, width_pts=300))
    writer.insert_page(jpeg_page(0, width_pts=100))
    writer.insert_page(jpeg_page(5, width_pts=600))

    assert writer.page_indexes == [0, 2, 5]

    with fitz.open(stream=writer.to_bytes(), filetype="pdf") as doc:
        assert [round(p.rect.width) for p in doc] == [100, 300, 600]
    writer.close()


def test_page_is_one_image_filling_page():
    data = create_pdf([jpeg_page(0, 200, 100)])

    with fitz.open(stream=data, filetype="pdf") as doc:
        page = doc[0]
        assert (page.rect.width, page.rect.height) == (200, 100)
        images = page.get_images(full=True)
        assert len(images) == 1
        assert images[0][2:4] == (100, 50)


def test_duplicate_index_rejected():
    writer = PDFWriter()
    writer.insert_page(jpeg_page(1))
    with pytest.raises(ValueError):
        writer.insert_page(jpeg_page(1))
    writer.close()


def test_empty_document_cannot_serialize():
    writer = PDFWriter()
    with pytest.raises(SerializeError):
        writer.to_bytes()
    writer.close()


def test_title_metadata():
    data = create_pdf([jpeg_page(0)], title="Quarterly Report")
    with fitz.open(stream=data, filetype="pdf") as doc:
        assert doc.metadata["title"] == "Quarterly Report"


def test_save_to_file(tmp_path):
    writer = PDFWriter()
    writer.insert_page(jpeg_page(0))
    writer.save(tmp_path / "out.pdf")
    writer.close()

    assert (tmp_path / "out.pdf").read_bytes().startswith(b"%PDF")
    assert writer.get_total_size() > 0
