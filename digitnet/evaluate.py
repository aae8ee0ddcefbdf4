"""
Accuracy of the digit network on the IDX test set.

This is the end-to-end regression check: with the canonical weights the
network should classify at least 97% of the 10,000 test digits correctly.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path

from torch.utils.data import DataLoader

from .config import DEFAULT_DATA_DIR, DEFAULT_WEIGHTS_DIR, TEST_IMAGES_FILE, TEST_LABELS_FILE
from .dataset import MnistDataset, load_dataset, load_labels
from .logging_config import setup_logging
from .model import MnistNet
from .network import Network

logger = logging.getLogger(__name__)


@dataclass
class EvaluationConfig:
    """Runtime parameters for evaluation."""

    data_dir: Path = DEFAULT_DATA_DIR
    weights_dir: Path = DEFAULT_WEIGHTS_DIR
    batch_size: int = 256
    verbose: bool = False


def load_test_set(data_dir: Path) -> MnistDataset:
    """Read the test images and labels from `data_dir`."""
    paths = (data_dir / TEST_IMAGES_FILE, data_dir / TEST_LABELS_FILE)
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found at {path}.")
    return MnistDataset(load_dataset(paths[0].read_bytes()), load_labels(paths[1].read_bytes()))


def evaluate_network(network: Network, data_loader: DataLoader) -> float:
    """
    Compute classification accuracy over every batch of the loader.

    Args:
        network: Network with loaded weights.
        data_loader: Loader yielding `(inputs, targets)` batches of canonical
            tensors and integer labels.

    Returns:
        Accuracy as a percentage in the `[0, 100]` range. A batch whose
        forward pass fails counts as entirely wrong.
    """
    correct = 0
    total = 0

    for inputs, targets in data_loader:
        count = targets.size(0)
        predictions = network.predict_batch(inputs, count)
        if len(predictions) != count:
            logger.warning("Batch of %d sample(s) produced no predictions", count)
        correct += sum(int(p == t) for p, t in zip(predictions, targets.tolist()))
        total += count

    return 100.0 * correct / max(total, 1)


def run_evaluation(config: EvaluationConfig) -> float:
    """
    Load weights and test data, then report test-set accuracy.

    Args:
        config: EvaluationConfig instance detailing data/weight locations.
    """
    setup_logging(logging.DEBUG if config.verbose else logging.INFO)

    net = MnistNet.from_directory(config.weights_dir)
    dataset = load_test_set(config.data_dir)
    loader = DataLoader(dataset, batch_size=config.batch_size, shuffle=False)

    accuracy = evaluate_network(net.network, loader)
    print(f"Test accuracy: {accuracy:.2f}%")
    return accuracy


def parse_args() -> EvaluationConfig:
    """Parse CLI arguments for the evaluation script."""
    parser = argparse.ArgumentParser(description="Evaluate the digit network on the IDX test set.")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=EvaluationConfig.data_dir,
        help=f"Directory holding {TEST_IMAGES_FILE} and {TEST_LABELS_FILE}.",
    )
    parser.add_argument(
        "--weights-dir",
        type=Path,
        default=EvaluationConfig.weights_dir,
        help="Directory holding the raw float32 weight files.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=EvaluationConfig.batch_size,
        help="Batch size used during evaluation.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug details.")

    args = parser.parse_args()
    return EvaluationConfig(
        data_dir=args.data_dir,
        weights_dir=args.weights_dir,
        batch_size=args.batch_size,
        verbose=args.verbose,
    )


def main() -> None:
    run_evaluation(parse_args())


if __name__ == "__main__":
    main()
