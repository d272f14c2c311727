"""Shared fixtures: small PDFs built in memory."""

import io

import fitz
import numpy as np
import pikepdf
import pytest
from PIL import Image


def make_pdf(page_sizes, title=None):
    """One text line per page, pages sized (width, height) in points."""
    doc = fitz.open()
    for i, (width, height) in enumerate(page_sizes):
        page = doc.new_page(width=width, height=height)
        page.insert_text((10, 30), f"Page {i + 1}", fontsize=14)
    if title:
        doc.set_metadata({"title": title})
    data = doc.tobytes()
    doc.close()
    return data


def make_raw_pdf(content: bytes, width: float, height: float) -> bytes:
    """Single page whose content stream is written in PDF user space."""
    pdf = pikepdf.Pdf.new()
    page = pdf.add_blank_page(page_size=(width, height))
    page.Contents = pdf.make_stream(content)
    out = io.BytesIO()
    pdf.save(out)
    pdf.close()
    return out.getvalue()


def noise_png(width: int, height: int, seed: int = 0) -> bytes:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    out = io.BytesIO()
    Image.fromarray(pixels).save(out, format="PNG")
    return out.getvalue()


def page_widths(data: bytes):
    with fitz.open(stream=data, filetype="pdf") as doc:
        return [round(page.rect.width) for page in doc]


@pytest.fixture
def one_page_pdf():
    return make_pdf([(612, 792)])


@pytest.fixture
def ten_page_pdf():
    # Distinct widths identify each source page in the output
    return make_pdf([(200 + 10 * i, 300) for i in range(10)])


@pytest.fixture
def noise_pdf():
    """Page filled with an incompressible image; well above 1 MB."""
    doc = fitz.open()
    page = doc.new_page(width=612, height=792)
    page.insert_image(page.rect, stream=noise_png(800, 800))
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def fitz_page():
    """Factory for a loaded page of a one-page text PDF."""
    docs = []

    def _page(width=612, height=792):
        doc = fitz.open(stream=make_pdf([(width, height)]), filetype="pdf")
        docs.append(doc)
        return doc.load_page(0)

    yield _page
    for doc in docs:
        doc.close()


class FakePage:
    """Page stand-in with a fixed rect that fails if rendered."""

    def __init__(self, width, height, error=None):
        self.rect = fitz.Rect(0, 0, width, height)
        self.error = error

    def get_pixmap(self, **kwargs):
        raise self.error or AssertionError("get_pixmap should not be called")
