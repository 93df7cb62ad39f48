"""
Command line entry point.

Usage:
    python run.py --input <image or directory> --model <detector.onnx> [options]
    python run.py --help

Examples:
    # Extract text for manual translation
    python run.py -e --input pages/ --model detector.onnx --output texts/

    # Replace text from an edited interchange directory
    python run.py -r --input pages/ --model detector.onnx --text texts/ --output out/

    # Fully automatic translation, also saving the cleaned pages
    python run.py --input page_001.png --model detector.onnx --clean
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config import Mode, RunOptions
from .errors import PipelineError
from .image_io import is_supported_image, list_images
from .pipeline import PageTranslationPipeline


class _BelowLevel(logging.Filter):
    """Pass only records below a level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def build_log_handlers() -> List[logging.Handler]:
    """Progress goes to stdout; errors and failed-page summaries go to stderr."""
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_BelowLevel(logging.ERROR))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    return [stdout_handler, stderr_handler]


def setup_logging(log_level: str = "INFO"):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=build_log_handlers(),
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Page Translator - detect, transcribe, translate and replace text in page images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run.py -e --input pages/ --model detector.onnx --output texts/
    python run.py -r --input pages/ --model detector.onnx --text texts/
    python run.py --input page_001.png --model detector.onnx --clean --single
        """
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "-e", "--extract",
        action="store_true",
        help="Extract text from images into interchange JSON files"
    )
    mode.add_argument(
        "-r", "--replace",
        action="store_true",
        help="Replace text regions from interchange JSON containing translated text"
    )

    parser.add_argument(
        "-i", "--input",
        required=True,
        action="append",
        help="Input image or directory of images (repeatable)"
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output directory (default: ./output)"
    )
    parser.add_argument(
        "-t", "--text",
        default=None,
        help="Interchange JSON file, or directory of <page>.json files, for replace mode"
    )
    parser.add_argument(
        "-m", "--model",
        required=True,
        help="Path to the detection model (ONNX format)"
    )
    parser.add_argument(
        "-l", "--lang",
        default=None,
        help="Tesseract OCR language (default: jpn_vert)"
    )
    parser.add_argument(
        "-d", "--data",
        default=None,
        help="Tesseract data directory (default: $TESSDATA_PREFIX)"
    )
    parser.add_argument(
        "-p", "--padding",
        type=int,
        default=None,
        help="Padding around text regions in pixels (default: 10)"
    )
    parser.add_argument(
        "--single",
        action="store_true",
        help="Process pages sequentially on one thread"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of parallel workers (default: CPU count)"
    )
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Also save each page with its text removed"
    )
    parser.add_argument(
        "-c", "--config",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser.parse_args(argv)


def collect_inputs(paths: List[str]) -> List[str]:
    """Expand directories into the images they contain."""
    pages: List[str] = []
    for path in paths:
        if os.path.isdir(path):
            pages.extend(list_images(path))
        else:
            pages.append(path)
    return pages


def build_options(args: argparse.Namespace) -> RunOptions:
    if args.extract:
        mode = Mode.EXTRACT
    elif args.replace:
        mode = Mode.REPLACE
    else:
        mode = Mode.TRANSLATE

    return RunOptions(
        inputs=collect_inputs(args.input),
        mode=mode,
        output=args.output,
        text=args.text,
        model=args.model,
        lang=args.lang,
        data=args.data,
        padding=args.padding,
        single=args.single,
        clean=args.clean,
        workers=args.workers,
        config_path=args.config if os.path.exists(args.config) else None,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    log_level = "DEBUG" if args.verbose else "INFO"
    setup_logging(log_level)

    logger = logging.getLogger(__name__)

    options = build_options(args)
    skipped = [p for p in options.inputs if not is_supported_image(p)]
    if skipped:
        logger.warning(f"Inputs without a JPG/PNG/WebP extension: {', '.join(skipped)}")

    logger.info("=" * 60)
    logger.info("Page Translator")
    logger.info("=" * 60)
    logger.info(f"Mode: {options.mode.value}{' + clean' if options.clean else ''}")
    logger.info(f"Pages: {len(options.inputs)}")
    logger.info(f"Config: {options.config_path or 'Using defaults'}")

    try:
        pipeline = PageTranslationPipeline(options)
    except PipelineError as e:
        logger.error(f"Failed to initialize pipeline: {e.kind}: {e}")
        return 2

    report = pipeline.run()

    logger.info("=" * 60)
    if report.exit_code == 0:
        logger.info("All pages completed successfully!")
    else:
        logger.error(f"{len(report.failed)} page(s) failed")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
