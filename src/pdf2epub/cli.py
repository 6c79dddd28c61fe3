#!/usr/bin/env python
"""
Command-line interface for the PDF to EPUB pipeline.

Usage:
    pdf2epub <input.pdf> [-o output.epub] [options]

Examples:
    # Convert a scanned PDF
    pdf2epub book.pdf

    # Keep printed page numbers as EPUB page-break markers
    pdf2epub book.pdf -o book.epub --extract-page-numbers

    # Re-run layout and export from saved detections, without OCR models
    pdf2epub book.pdf --detections-dir ./detections
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from . import __version__
from .config import LOG_FORMAT, get_config

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger("pdf2epub")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="pdf2epub",
        description="PDF to EPUB - Convert scanned PDFs into reflowable e-books using OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Convert a PDF next to the input file:
    pdf2epub book.pdf

  Convert with explicit PaddleOCR model directories:
    pdf2epub book.pdf --det-model-dir models/det --rec-model-dir models/rec

  Process only specific pages and keep page numbers:
    pdf2epub book.pdf --pages 1-20 --extract-page-numbers

  Save raw detections, then replay them later:
    pdf2epub book.pdf --dump-detections ./detections
    pdf2epub book.pdf --detections-dir ./detections --format json
        """
    )

    # Required arguments
    parser.add_argument(
        "input",
        help="Input PDF file or folder of page images"
    )

    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Output file (default: input path with .epub/.json suffix)"
    )

    # Rendering and OCR
    parser.add_argument(
        "--dpi",
        type=int,
        default=None,
        help="Rasterization resolution (default: 300)"
    )

    parser.add_argument(
        "--ocr-engine",
        choices=["paddleocr", "tesseract", "easyocr", "replay"],
        default=None,
        help="OCR engine (default: paddleocr)"
    )

    parser.add_argument(
        "--det-model-dir",
        default=None,
        help="Text detection model directory (PaddleOCR)"
    )

    parser.add_argument(
        "--rec-model-dir",
        default=None,
        help="Text recognition model directory (PaddleOCR)"
    )

    parser.add_argument(
        "--lang",
        default=None,
        help="OCR language code (default: en)"
    )

    parser.add_argument(
        "--use-gpu",
        action="store_true",
        help="Use GPU for model inference if available"
    )

    parser.add_argument(
        "--confidence-floor",
        type=float,
        default=None,
        help="Discard detections below this confidence (default: 0.5)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--page-timeout",
        type=float,
        default=None,
        help="Seconds allowed per page before it is skipped (default: 300, 0 = unlimited)"
    )

    # Output
    parser.add_argument(
        "--format", "-f",
        choices=["epub", "json"],
        default="epub",
        help="Output format (default: epub)"
    )

    parser.add_argument(
        "--extract-page-numbers",
        action="store_true",
        help="Keep detected printed page numbers as page-break markers"
    )

    parser.add_argument(
        "--title",
        default=None,
        help="Book title (default: PDF metadata or file name)"
    )

    parser.add_argument(
        "--author",
        default=None,
        help="Book author (default: PDF metadata)"
    )

    parser.add_argument(
        "--language",
        default=None,
        help="EPUB language code (default: en)"
    )

    parser.add_argument(
        "--pages-per-chapter",
        type=int,
        default=None,
        help="Source pages per EPUB chapter (default: 20)"
    )

    # Detections
    parser.add_argument(
        "--detections-dir",
        default=None,
        help="Replay OCR detections saved in this directory instead of running OCR"
    )

    parser.add_argument(
        "--dump-detections",
        default=None,
        metavar="DIR",
        help="Save raw OCR detections per page to this directory"
    )

    # Preprocessing
    parser.add_argument(
        "--deskew",
        action="store_true",
        help="Correct page skew before OCR"
    )

    parser.add_argument(
        "--denoise",
        action="store_true",
        help="Remove scan noise before OCR"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def check_dependencies(engine: str) -> bool:
    """Check if required dependencies are available."""
    missing = []

    # Required
    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import pdf2image
    except ImportError:
        missing.append("pdf2image (and the poppler system package)")

    try:
        import ebooklib
    except ImportError:
        missing.append("EbookLib")

    try:
        import bs4
    except ImportError:
        missing.append("beautifulsoup4")

    # Selected OCR engine
    if engine == "paddleocr":
        try:
            import paddleocr
        except ImportError:
            missing.append("paddleocr + paddlepaddle (pip install 'pdf2epub[paddle]')")
    elif engine == "tesseract":
        try:
            import pytesseract
        except ImportError:
            missing.append("pytesseract")
    elif engine == "easyocr":
        try:
            import easyocr
        except ImportError:
            missing.append("easyocr (pip install 'pdf2epub[easyocr]')")

    # Report
    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        return False

    return True


def build_config(args):
    """Apply command-line options on top of the environment configuration."""
    from .config import check_gpu_available

    config = get_config()

    if args.dpi is not None:
        config.image.dpi = args.dpi
    if args.deskew:
        config.image.deskew = True
    if args.denoise:
        config.image.denoise = True

    if args.detections_dir:
        config.ocr.detections_dir = args.detections_dir
        config.ocr.engine = "replay"
    if args.ocr_engine:
        config.ocr.engine = args.ocr_engine
    if args.det_model_dir:
        config.ocr.det_model_dir = args.det_model_dir
    if args.rec_model_dir:
        config.ocr.rec_model_dir = args.rec_model_dir
    if args.lang:
        config.ocr.language = args.lang
    if args.confidence_floor is not None:
        config.ocr.confidence_floor = args.confidence_floor

    if args.use_gpu:
        if check_gpu_available():
            logger.info("GPU acceleration enabled")
            config.ocr.use_gpu = True
        else:
            logger.warning("GPU requested but not available, using CPU")

    if args.page_timeout is not None:
        config.page.page_timeout = args.page_timeout or None

    if args.title:
        config.export.title = args.title
    if args.author:
        config.export.author = args.author
    if args.language:
        config.export.language = args.language
    if args.pages_per_chapter:
        config.export.pages_per_chapter = args.pages_per_chapter
    if args.extract_page_numbers:
        config.export.extract_page_numbers = True

    if args.dump_detections:
        config.dump_detections_dir = args.dump_detections

    return config


def run_pipeline(args) -> int:
    """Run the PDF to EPUB conversion."""
    from .errors import ConversionCancelled, Pdf2EpubError
    from .utils.io import default_output_path, open_source, parse_page_range
    from .utils.converter import Converter

    start_time = time.time()
    config = build_config(args)

    input_path = Path(args.input)
    suffix = ".json" if args.format == "json" else ".epub"
    output_path = Path(args.output) if args.output else default_output_path(input_path, suffix)

    converter = None
    try:
        source = open_source(
            input_path,
            grayscale=config.image.grayscale,
            timeout=config.page.page_timeout
        )

        page_indices = None
        if args.pages:
            page_indices = parse_page_range(args.pages, source.page_count())
            logger.info(f"Processing pages: {[i + 1 for i in page_indices]}")

        converter = Converter(config, source=source)
        result = converter.convert(input_path, output_path, page_indices, fmt=args.format)
    except ConversionCancelled as e:
        logger.warning(f"Conversion cancelled: {e}")
        return 130
    except Pdf2EpubError as e:
        logger.error(f"Conversion failed: {e}")
        if config.debug_mode:
            raise
        return 1

    elapsed = time.time() - start_time
    document = result.document

    if not args.quiet:
        print("\n" + "=" * 60)
        print("PDF TO EPUB CONVERSION COMPLETE")
        print("=" * 60)
        print(f"Source: {input_path}")
        print(f"Output: {result.output_path}")
        print(f"Pages processed: {document.page_count}")
        print(f"Content blocks: {len(document.blocks)}")
        print(f"Processing time: {elapsed:.2f}s")
        if result.failures:
            print()
            print(f"Skipped pages ({len(result.failures)}):")
            for failure in result.failures:
                print(f"  page {failure.page_index} [{failure.stage}]: {failure.message}")
        if document.page_number_issues:
            print()
            print("Page numbering warnings:")
            for issue in document.page_number_issues:
                print(f"  {issue.message}")
        print("=" * 60)

    return 0


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    engine = args.ocr_engine or ("replay" if args.detections_dir else get_config().ocr.engine)
    if not check_dependencies(engine):
        sys.exit(1)

    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.verbose:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
