#!/usr/bin/env python3
"""
recompress_pdf.py - Raster recompression CLI.

Every page becomes one downscaled JPEG. Text, vectors and links are lost;
the page sizes are kept.

Usage:
    python recompress_pdf.py input.pdf -o output.pdf
    python recompress_pdf.py input.pdf --tier low
    python recompress_pdf.py *.pdf --output-dir ./compressed/
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent to path when running as script
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent))

from pdf_recompressor.pipeline import (
    BATCH_SIZE,
    get_title,
    output_name_for,
    parse_document,
    recompress_file,
)
from pdf_recompressor.errors import ParseError
from pdf_recompressor.policy import CompressionQuality


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Shrink PDFs by replacing each page with a compressed image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python recompress_pdf.py report.pdf -o small.pdf
  python recompress_pdf.py report.pdf --tier low
  python recompress_pdf.py *.pdf --output-dir ./out/ --title-names

Tiers (scale / JPEG quality):
  low     0.5 / 0.3
  medium  0.7 / 0.5
  high    0.8 / 0.7
Without --tier: < 1 MB -> high, 1-5 MB -> medium, >= 5 MB -> low.
"""
    )

    parser.add_argument(
        "input",
        nargs="+",
        type=Path,
        help="Input PDF file(s)"
    )

    output = parser.add_mutually_exclusive_group()
    output.add_argument(
        "-o", "--output",
        type=Path,
        help="Output file (single input only)"
    )
    output.add_argument(
        "--output-dir",
        type=Path,
        help="Output directory (for multiple files)"
    )

    parser.add_argument(
        "-t", "--tier",
        choices=[t.value for t in CompressionQuality],
        default=None,
        help="Quality tier (default: chosen from input size)"
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=BATCH_SIZE,
        help=f"Pages per memory batch (default: {BATCH_SIZE})"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Parallel page workers within a batch (default: 1)"
    )

    parser.add_argument(
        "--subsample",
        type=float,
        metavar="FACTOR",
        help="Width-only subsampling by FACTOR instead of JPEG recompression"
    )

    parser.add_argument(
        "--fallback-original",
        action="store_true",
        help="Write the original file when recompression fails"
    )

    parser.add_argument(
        "--title-names",
        action="store_true",
        help="Name outputs in --output-dir after the document title"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    return parser.parse_args(argv)


def print_progress(current: int, total: int):
    """Print progress bar."""
    width = 40
    filled = int(width * current / total)
    bar = "=" * filled + "-" * (width - filled)
    pct = current / total * 100
    print(f"\r[{bar}] {current}/{total} ({pct:.0f}%)", end="", file=sys.stderr)
    if current == total:
        print(file=sys.stderr)


def unique_path(path: Path, taken: set, avoid_existing: bool) -> Path:
    """Add a numeric suffix until path is unused in this run (and on disk)."""
    candidate = path
    n = 1
    while candidate in taken or (avoid_existing and candidate.exists()):
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        n += 1
    return candidate


def output_path_for(input_path: Path, output_dir: Path, title_names: bool, taken: set) -> Path:
    """Output location for one input inside output_dir, never reused."""
    if title_names:
        try:
            doc = parse_document(input_path.read_bytes())
        except ParseError:
            pass
        else:
            with doc:
                name = output_name_for(get_title(doc))
            path = unique_path(output_dir / name, taken, avoid_existing=True)
            taken.add(path)
            return path
    path = unique_path(output_dir / f"{input_path.stem}_compressed.pdf", taken, avoid_existing=False)
    taken.add(path)
    return path


def run_one(args, input_path: Path, output_path: Path):
    options = dict(
        batch_size=args.batch_size,
        max_workers=args.workers,
        progress_callback=print_progress
    )
    return recompress_file(
        input_path,
        output_path,
        tier=args.tier,
        fallback_to_original=args.fallback_original,
        subsample_factor=args.subsample,
        **options
    )


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.batch_size < 1:
        print("Error: --batch-size must be at least 1", file=sys.stderr)
        return 1
    if args.subsample is not None and args.subsample <= 0:
        print("Error: --subsample must be positive", file=sys.stderr)
        return 1

    # Validate inputs
    valid_inputs = []
    for p in args.input:
        if not p.exists():
            print(f"Error: File not found: {p}", file=sys.stderr)
            continue
        if p.suffix.lower() != ".pdf":
            print(f"Warning: Skipping non-PDF: {p}", file=sys.stderr)
            continue
        valid_inputs.append(p)

    if not valid_inputs:
        print("Error: No valid PDF files", file=sys.stderr)
        return 1

    # Determine output
    if len(valid_inputs) > 1:
        if args.output:
            print("Error: Use --output-dir for multiple files", file=sys.stderr)
            return 1
        if not args.output_dir:
            args.output_dir = Path(".")

    # Process single file
    if len(valid_inputs) == 1 and not args.output_dir:
        input_path = valid_inputs[0]
        output_path = args.output or input_path.with_name(input_path.stem + "_compressed.pdf")

        result = run_one(args, input_path, output_path)

        if result.success or result.used_fallback:
            print(f"\n{result.summary()}")
            return 0
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    # Batch processing
    args.output_dir.mkdir(parents=True, exist_ok=True)

    total_in = 0
    total_out = 0
    successes = 0
    taken = set()

    for i, input_path in enumerate(valid_inputs):
        output_path = output_path_for(input_path, args.output_dir, args.title_names, taken)
        print(f"\n[{i+1}/{len(valid_inputs)}] {input_path.name}")

        result = run_one(args, input_path, output_path)

        total_in += result.input_size
        if result.success or result.used_fallback:
            total_out += result.output_size
            successes += 1
        else:
            print(f"Error: {result.error}", file=sys.stderr)

    print(f"\n{'='*50}")
    print(f"Batch complete: {successes}/{len(valid_inputs)} files")
    print(f"Total: {total_in:,} -> {total_out:,} bytes")
    if total_in > 0:
        print(f"Reduction: {(1 - total_out/total_in)*100:.1f}%")

    return 0 if successes == len(valid_inputs) else 1


if __name__ == "__main__":
    sys.exit(main())
