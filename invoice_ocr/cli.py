"""Command-line interface for OCR on single images and image folders.

Provides a ``process`` subcommand writing one OCR result as JSON and a
``batch`` subcommand writing one JSON line per image, continuing past
images that fail.
"""

import argparse
import json
import sys
import time
from pathlib import Path

import numpy as np
from PIL import Image

from invoice_ocr.ocr.engine import OcrEngine
from invoice_ocr.ocr.loader import create_engine_from_dir
from invoice_ocr.utils.config import load_config
from invoice_ocr.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.bmp")


def _find_images(input_dir: Path) -> list[Path]:
    """Find all supported image files in a directory.

    Args:
        input_dir: Directory to scan for images.

    Returns:
        Sorted list of image file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def load_image(path: Path) -> np.ndarray:
    """Load an image file as an RGB numpy array."""
    with Image.open(path) as img:
        return np.array(img.convert("RGB"))


def _build_engine(config_path: Path | None, model_dir: Path | None) -> OcrEngine:
    config = load_config(config_path)
    setup_logging(config.log_level)
    return create_engine_from_dir(model_dir, config)


def process_image(file_path: Path, engine: OcrEngine) -> dict[str, object]:
    """Run OCR on one image file and return a JSON-ready dict."""
    result = engine.process(load_image(file_path))
    output = result.to_dict()
    output["filename"] = file_path.name
    output["confidence"] = round(result.confidence, 3)
    return output


def process_folder(
    input_dir: Path,
    output_path: Path,
    engine: OcrEngine,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all images in a folder and write results as JSON lines.

    A failing image is recorded with its error and processing moves on
    to the next one.

    Args:
        input_dir: Directory containing image files.
        output_path: Path for the output JSONL file.
        engine: Engine used for every image.
        verbose: Whether to print per-file progress.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_images(input_dir)
    if not files:
        logger.warning("No images found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d images to process", len(files))

    successful = 0
    failed = 0
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as out:
        for i, file_path in enumerate(files, 1):
            if verbose:
                print(f"Processing [{i}/{len(files)}]: {file_path.name}")

            start_time = time.time()
            try:
                record = process_image(file_path, engine)
                record["status"] = "success"
                successful += 1
            except Exception as exc:
                logger.error("Failed to process %s: %s", file_path.name, exc)
                record = {"filename": file_path.name, "status": "failed", "error": str(exc)}
                failed += 1
            record["processing_time_s"] = round(time.time() - start_time, 2)
            out.write(json.dumps(record, ensure_ascii=False) + "\n")

    logger.info("Results written to %s", output_path)
    summary = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary, output_path)
    return summary


def _print_summary(summary: dict[str, int], output_path: Path) -> None:
    print(f"\n{'=' * 50}")
    print("Batch OCR Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_path}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Invoice OCR",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--model-dir", type=Path, help="Directory with ONNX models")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    single_parser = subparsers.add_parser("process", help="Run OCR on a single image")
    single_parser.add_argument("file", type=Path, help="Image file to process")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    batch_parser = subparsers.add_parser("batch", help="Run OCR on a folder of images")
    batch_parser.add_argument("input_dir", type=Path, help="Input directory with images")
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.jsonl"),
        help="Output JSONL file (default: results.jsonl)",
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    args = parser.parse_args(argv)

    if args.command == "process":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        engine = _build_engine(args.config, args.model_dir)
        result = process_image(args.file, engine)
        output_str = json.dumps(result, indent=2, ensure_ascii=False)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str, encoding="utf-8")
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        engine = _build_engine(args.config, args.model_dir)
        process_folder(args.input_dir, args.output, engine, args.verbose)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
