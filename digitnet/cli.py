"""
Command line front end.

    python -m digitnet.cli sample 7 seven.png
    python -m digitnet.cli classify drawing.png

`sample` prints the label of a test-set digit and saves it as a PNG (black
ink on white). `classify` normalizes a drawing and prints the predicted digit,
or `?` when the drawing cannot be normalized or classified.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from .config import DEFAULT_DATA_DIR, DEFAULT_WEIGHTS_DIR, SAMPLE_PNG_FILE, TEST_IMAGES_FILE, TEST_LABELS_FILE
from .dataset import load_dataset, load_labels
from .errors import DigitNetError
from .logging_config import setup_logging
from .model import MnistNet
from .normalizer import ImageNormalizer

UNKNOWN = "?"


def read_file(path: Path) -> bytes:
    if not path.exists():
        raise FileNotFoundError(f"File not found at {path}.")
    return path.read_bytes()


def export_sample(data_dir: Path, index: int, output: Path) -> int:
    """Save test image `index` to `output` and return its label."""
    images = load_dataset(read_file(data_dir / TEST_IMAGES_FILE))
    labels = load_labels(read_file(data_dir / TEST_LABELS_FILE))

    label = labels.label(index)
    images.image(index).save(output, format="PNG")
    return label


def classify_drawing(weights_dir: Path, image_path: Path) -> Optional[int]:
    """Predicted digit for a drawing file, or `None` if there is no answer."""
    with Image.open(image_path) as image:
        inputs = ImageNormalizer().mnist_data(image)
    if inputs is None:
        return None
    return MnistNet.from_directory(weights_dir).predict_input(inputs)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Handwritten digit tools.")
    parser.add_argument("--verbose", action="store_true", help="Log debug details.")
    commands = parser.add_subparsers(dest="command", required=True)

    sample = commands.add_parser("sample", help="Export a test-set digit as PNG and print its label.")
    sample.add_argument("index", type=int, help="Index of the digit in the test set.")
    sample.add_argument(
        "filename",
        type=Path,
        nargs="?",
        default=Path(SAMPLE_PNG_FILE),
        help="Where to write the PNG (default: %(default)s)",
    )
    sample.add_argument(
        "--data-dir",
        type=Path,
        default=DEFAULT_DATA_DIR,
        help="Directory holding the IDX test files (default: %(default)s)",
    )

    classify = commands.add_parser("classify", help="Predict the digit in a drawing.")
    classify.add_argument("image", type=Path, help="Image file with dark ink on a light background.")
    classify.add_argument(
        "--weights-dir",
        type=Path,
        default=DEFAULT_WEIGHTS_DIR,
        help="Directory holding the raw float32 weight files (default: %(default)s)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        if args.command == "sample":
            print(export_sample(args.data_dir, args.index, args.filename))
        else:
            prediction = classify_drawing(args.weights_dir, args.image)
            print(UNKNOWN if prediction is None else prediction)
    except (DigitNetError, FileNotFoundError, UnidentifiedImageError) as error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
