import pytest

from conftest import FakePage
from pdf_recompressor import page_compressor
from pdf_recompressor.compression import DCT_DECODE, FLATE_DECODE
from pdf_recompressor.errors import EncodeError
from pdf_recompressor.page_compressor import compress_page, subsample_page_result
from pdf_recompressor.policy import CompressionQuality


def test_compress_page_keeps_point_size(fitz_page):
    result = compress_page(fitz_page(612, 792), CompressionQuality.HIGH, page_num=4)

    assert result.success
    compressed = result.page
    assert compressed.page_num == 4
    assert (compressed.width, compressed.height) == (490, 634)
    assert (compressed.page_width_pts, compressed.page_height_pts) == (612.0, 792.0)
    assert compressed.filter == DCT_DECODE
    assert result.compressed_size == compressed.total_size > 0


@pytest.mark.parametrize("tier, size", [
    ("low", (100, 50)),
    ("medium", (140, 70)),
    ("high", (160, 80)),
])
def test_tier_scale_drives_pixel_size(fitz_page, tier, size):
    result = compress_page(fitz_page(200, 100), tier)
    assert (result.page.width, result.page.height) == size


def test_zero_area_page_is_skipped():
    result = compress_page(FakePage(0, 0), CompressionQuality.MEDIUM, page_num=1)

    assert result.skipped
    assert result.page is None
    assert "no area" in result.error


def test_encode_failure_is_skipped_and_buffer_released(fitz_page, monkeypatch):
    seen = []

    def failing_encode(buffer, quality, detect_grayscale=True):
        seen.append(buffer)
        raise EncodeError("codec unavailable")

    monkeypatch.setattr(page_compressor, "encode_jpeg", failing_encode)

    result = compress_page(fitz_page(), "low", page_num=2)

    assert result.skipped
    assert result.error == "codec unavailable"
    assert seen and seen[0].pixels is None


def test_subsample_page_result(fitz_page):
    result = subsample_page_result(fitz_page(200, 100), 0.25, page_num=0)

    assert result.success
    assert (result.page.width, result.page.height) == (50, 100)
    assert result.page.filter == FLATE_DECODE
    assert (result.page.page_width_pts, result.page.page_height_pts) == (200.0, 100.0)


def test_subsample_zero_area_is_skipped():
    assert subsample_page_result(FakePage(0, 10), 0.5).skipped
