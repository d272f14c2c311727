"""
pipeline.py - Whole-document recompression.

Pipeline:
1. Parse input bytes
2. Pick a quality tier (explicit, or from input size)
3. Per page, in batches of BATCH_SIZE: rasterize -> JPEG -> one-image page
4. Serialize the new PDF

Batches only bound peak memory: a batch's buffers are dropped before the
next batch starts. Output page order always matches input page order.
"""

import gc
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, Union

import fitz  # pip install pymupdf

from .errors import ParseError, RecompressionError, SerializeError
from .page_compressor import PageResult, compress_page, subsample_page_result
from .pdf_writer import PDFWriter
from .policy import CompressionQuality, resolve_tier, select_tier, size_in_mb
from .rasterize import RENDER_LOCK

logger = logging.getLogger(__name__)

# Pages per memory scope
BATCH_SIZE = 3

PageFunction = Callable[[object, int], PageResult]
ProgressCallback = Callable[[int, int], None]


@dataclass
class RecompressionResult:
    """Result of recompressing a PDF."""
    success: bool
    error: Optional[RecompressionError] = None
    tier: Optional[CompressionQuality] = None

    page_count: int = 0
    pages_ok: int = 0
    pages_failed: int = 0
    skipped_pages: List[int] = field(default_factory=list)
    batches: List[Tuple[int, ...]] = field(default_factory=list)

    input_size: int = 0
    output_size: int = 0
    total_time: float = 0.0

    page_results: List[PageResult] = field(default_factory=list)
    output: Optional[bytes] = None

    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    used_fallback: bool = False

    @property
    def reduction_pct(self) -> float:
        if self.input_size == 0 or self.output_size == 0:
            return 0
        return (1 - self.output_size / self.input_size) * 100

    @property
    def compression_ratio(self) -> float:
        """Output size as a percentage of input size."""
        if self.input_size == 0:
            return 0
        return self.output_size * 100 / self.input_size

    def summary(self) -> str:
        name_in = self.input_path.name if self.input_path else "<bytes>"
        name_out = self.output_path.name if self.output_path else "<bytes>"
        tier = self.tier.value if self.tier else "-"
        return (
            f"Input:  {name_in} ({self.input_size:,} bytes, {size_in_mb(self.input_size):.2f} MB)\n"
            f"Output: {name_out} ({self.output_size:,} bytes, {size_in_mb(self.output_size):.2f} MB)\n"
            f"Tier: {tier}\n"
            f"Reduction: {self.reduction_pct:.1f}%\n"
            f"Pages: {self.pages_ok}/{self.page_count}"
            + (f" (skipped {', '.join(str(p) for p in self.skipped_pages)})" if self.skipped_pages else "")
            + f"\nTime: {self.total_time:.1f}s"
        )


def parse_document(data: bytes) -> fitz.Document:
    """
    Open PDF bytes with PyMuPDF.

    Raises:
        ParseError: empty, unreadable or password-protected input
    """
    if not data:
        raise ParseError("Input is empty")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise ParseError(f"Could not parse PDF: {e}") from e

    if doc.needs_pass:
        doc.close()
        raise ParseError("PDF is password protected")

    return doc


def get_title(doc: fitz.Document) -> Optional[str]:
    metadata = doc.metadata or {}
    title = (metadata.get("title") or "").strip()
    return title or None


def iter_batches(page_count: int, batch_size: int = BATCH_SIZE) -> Iterator[range]:
    """Yield consecutive page-index ranges of at most batch_size pages."""
    if batch_size < 1:
        raise ValueError(f"Batch size must be at least 1, got {batch_size}")

    for start in range(0, page_count, batch_size):
        yield range(start, min(start + batch_size, page_count))


def _process_one(doc: fitz.Document, page_num: int, page_fn: PageFunction) -> PageResult:
    try:
        with RENDER_LOCK:
            page = doc.load_page(page_num)
    except Exception as e:
        logger.warning(f"Page {page_num} could not be loaded: {e}")
        return PageResult(page_num=page_num, success=False, error=str(e))
    try:
        return page_fn(page, page_num)
    finally:
        # Page teardown touches the document too
        with RENDER_LOCK:
            del page


def _process_isolated(data: bytes, page_num: int, page_fn: PageFunction) -> PageResult:
    # PyMuPDF documents are not thread-safe: each worker opens its own
    with RENDER_LOCK:
        doc = fitz.open(stream=data, filetype="pdf")
    try:
        return _process_one(doc, page_num, page_fn)
    finally:
        with RENDER_LOCK:
            doc.close()


def _process_batch(
    data: bytes,
    doc: fitz.Document,
    batch: range,
    page_fn: PageFunction,
    max_workers: int
) -> List[PageResult]:
    if max_workers <= 1 or len(batch) == 1:
        return [_process_one(doc, page_num, page_fn) for page_num in batch]

    with ThreadPoolExecutor(max_workers=min(max_workers, len(batch))) as executor:
        # map() keeps submission order
        return list(executor.map(
            lambda page_num: _process_isolated(data, page_num, page_fn), batch
        ))


def _run(
    input_bytes: bytes,
    page_fn: PageFunction,
    result: RecompressionResult,
    batch_size: int,
    max_workers: int,
    progress_callback: Optional[ProgressCallback],
    doc: fitz.Document
) -> RecompressionResult:
    start_time = time.time()
    result.page_count = doc.page_count

    writer = PDFWriter()
    writer.set_title(get_title(doc))

    try:
        done = 0
        for batch in iter_batches(result.page_count, batch_size):
            result.batches.append(tuple(batch))
            logger.debug(f"Batch pages {batch.start}-{batch.stop - 1}")

            page_results = _process_batch(input_bytes, doc, batch, page_fn, max_workers)

            for page_result in page_results:
                if page_result.page is not None:
                    writer.insert_page(page_result.page, page_result.page_num)
                    result.pages_ok += 1
                else:
                    result.skipped_pages.append(page_result.page_num)
                # Encoded bytes now live in the output document only
                page_result.page = None
                result.page_results.append(page_result)

                done += 1
                if progress_callback:
                    progress_callback(done, result.page_count)

            del page_results
            gc.collect()

        result.pages_failed = result.page_count - result.pages_ok

        result.output = writer.to_bytes()
        result.output_size = len(result.output)
        result.success = True

    except SerializeError as e:
        logger.error(f"Serialize failed: {e}")
        result.error = e
    finally:
        writer.close()
        doc.close()
        result.total_time = time.time() - start_time

    if result.success:
        logger.info(f"\n{result.summary()}")
        logger.info(f"Compression ratio: {result.compression_ratio:.0f}%")

    return result


def _open(input_bytes: bytes, result: RecompressionResult) -> Optional[fitz.Document]:
    result.input_size = len(input_bytes or b"")
    try:
        return parse_document(input_bytes)
    except ParseError as e:
        logger.error(f"Parse failed: {e}")
        result.error = e
        return None


def recompress(
    input_bytes: bytes,
    tier: Optional[Union[CompressionQuality, str]] = None,
    batch_size: int = BATCH_SIZE,
    max_workers: int = 1,
    detect_grayscale: bool = True,
    progress_callback: Optional[ProgressCallback] = None
) -> RecompressionResult:
    """
    Rebuild a PDF with every page replaced by a downscaled JPEG.

    Args:
        input_bytes: Source PDF
        tier: Quality tier; chosen from input size when None
        batch_size: Pages per memory scope
        max_workers: Parallel page workers within a batch (1 = sequential)
        detect_grayscale: Encode gray pages as 1-channel JPEG
        progress_callback: Optional callback(current, total)

    Returns:
        RecompressionResult; output is None when parsing or serializing fails.
        Pages that fail to render or encode are skipped, not fatal.
    """
    result = RecompressionResult(success=False)
    if tier is not None:
        result.tier = resolve_tier(tier)

    doc = _open(input_bytes, result)
    if doc is None:
        return result

    if result.tier is None:
        result.tier = select_tier(result.input_size)

    logger.info(
        f"Recompressing {doc.page_count} pages, "
        f"{size_in_mb(result.input_size):.2f} MB, tier {result.tier.value}"
    )

    page_fn = partial(_compress_with_tier, tier=result.tier, detect_grayscale=detect_grayscale)
    return _run(input_bytes, page_fn, result, batch_size, max_workers, progress_callback, doc)


def _compress_with_tier(page, page_num: int, tier: CompressionQuality, detect_grayscale: bool) -> PageResult:
    return compress_page(page, tier, page_num=page_num, detect_grayscale=detect_grayscale)


def recompress_pdf(
    input_bytes: bytes,
    tier: Optional[Union[CompressionQuality, str]] = None
) -> Optional[bytes]:
    """Recompress PDF bytes; None when the document cannot be produced."""
    return recompress(input_bytes, tier).output


def subsample(
    input_bytes: bytes,
    subsample_factor: float,
    batch_size: int = BATCH_SIZE,
    max_workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None
) -> RecompressionResult:
    """
    Rebuild a PDF with each page's width divided by subsample_factor.

    Height keeps one pixel per point, pages are stored losslessly and keep
    their size in points.
    """
    if subsample_factor <= 0:
        raise ValueError(f"Subsample factor must be positive, got {subsample_factor}")

    result = RecompressionResult(success=False)
    doc = _open(input_bytes, result)
    if doc is None:
        return result

    logger.info(f"Subsampling {doc.page_count} pages by {subsample_factor}x in width")

    page_fn = partial(_subsample_with_scale, scale=1.0 / subsample_factor)
    return _run(input_bytes, page_fn, result, batch_size, max_workers, progress_callback, doc)


def _subsample_with_scale(page, page_num: int, scale: float) -> PageResult:
    return subsample_page_result(page, scale, page_num=page_num)


def subsample_pdf(input_bytes: bytes, subsample_factor: float) -> Optional[bytes]:
    """Width-only subsampling; None when the document cannot be produced."""
    return subsample(input_bytes, subsample_factor).output


def recompress_in_background(
    input_bytes: bytes,
    tier: Optional[Union[CompressionQuality, str]] = None,
    callback: Optional[Callable[[RecompressionResult], None]] = None,
    executor: Optional[ThreadPoolExecutor] = None,
    **kwargs
) -> Future:
    """
    Run recompress() on a background worker.

    The callback, if given, receives the RecompressionResult once done.
    Bad arguments raise here, before anything is scheduled. An unexpected
    failure on the worker reaches the callback as a failed result.
    """
    if tier is not None:
        tier = resolve_tier(tier)
    batch_size = kwargs.get("batch_size", BATCH_SIZE)
    if batch_size < 1:
        raise ValueError(f"Batch size must be at least 1, got {batch_size}")

    owned = executor is None
    if owned:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recompress")

    future = executor.submit(recompress, input_bytes, tier, **kwargs)
    if callback is not None:
        future.add_done_callback(partial(_notify, callback, len(input_bytes or b"")))

    if owned:
        # Already-submitted work still runs
        executor.shutdown(wait=False)

    return future


def _notify(
    callback: Callable[[RecompressionResult], None],
    input_size: int,
    future: Future
):
    error = future.exception()
    if error is None:
        callback(future.result())
        return

    logger.error(f"Background recompression failed: {error}")
    failed = RecompressionResult(success=False, input_size=input_size)
    failed.error = error if isinstance(error, RecompressionError) else RecompressionError(str(error))
    callback(failed)


def output_name_for(title: Optional[str]) -> str:
    """File name for a result: the document title, or a timestamp."""
    name = (title or "").strip().replace("/", "_").replace("\\", "_")
    if not name:
        name = f"{time.time():.0f}"
    return f"{name}.pdf"


def recompress_file(
    input_path: Path,
    output_path: Path,
    tier: Optional[Union[CompressionQuality, str]] = None,
    fallback_to_original: bool = False,
    subsample_factor: Optional[float] = None,
    **kwargs
) -> RecompressionResult:
    """
    Recompress a PDF file and write the result.

    With fallback_to_original, a failed run writes the input bytes
    unchanged instead of leaving no output.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)

    data = input_path.read_bytes()
    if subsample_factor is not None:
        result = subsample(data, subsample_factor, **kwargs)
    else:
        result = recompress(data, tier, **kwargs)
    result.input_path = input_path
    result.output_path = output_path

    if result.output is not None:
        output_path.write_bytes(result.output)
    elif fallback_to_original:
        logger.warning(f"Recompression failed ({result.error}), keeping original bytes")
        output_path.write_bytes(data)
        result.output_size = len(data)
        result.used_fallback = True
    else:
        return result

    logger.info(f"Wrote {output_path} ({size_in_mb(result.output_size):.2f} MB)")
    return result
