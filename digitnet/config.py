"""
Shared defaults: file names, folders and the canonical raster size.
"""

from __future__ import annotations

from pathlib import Path

# Constants that keep file and folder names in one place.
DEFAULT_DATA_DIR = Path("data")
DEFAULT_WEIGHTS_DIR = DEFAULT_DATA_DIR / "weights"

TEST_IMAGES_FILE = "t10k-images-idx3-ubyte"
TEST_LABELS_FILE = "t10k-labels-idx1-ubyte"
SAMPLE_PNG_FILE = "sample.png"

# Raw float32 weight files in the order the canonical network consumes them.
WEIGHT_FILES = (
    "model-h1w-5x5x1x32",
    "model-h1b-32",
    "model-h2w-5x5x32x64",
    "model-h2b-64",
    "model-h3w-3136x1024",
    "model-h3b-1024",
    "model-h4w-1024x10",
    "model-h4b-10",
)

# Side of the square raster the network consumes.
MNIST_SIZE = 28
NUM_CLASSES = 10
