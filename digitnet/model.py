"""
The canonical digit classifier: two convolutions, two poolings, two dense layers.

Topology (shapes are width x height x channels)::

    28x28x1  --conv 5x5, relu-->  28x28x32  --maxpool 2x2-->  14x14x32
             --conv 5x5, relu-->  14x14x64  --maxpool 2x2-->   7x7x64
             --dense, relu-->     1024      --dense, relu-->   10

Weights are frozen and come from eight raw float32 files (see
`digitnet.config.WEIGHT_FILES`). `ReferenceClassifier` is the same topology as
a regular PyTorch module; `export_weights` writes its parameters in the raw
layout `load_weights` reads back.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import torch
from torch import nn

from .builder import NetworkBuilder
from .config import MNIST_SIZE, NUM_CLASSES, WEIGHT_FILES
from .errors import InvalidFormatError
from .network import Network

logger = logging.getLogger(__name__)


def read_floats(data: bytes) -> torch.Tensor:
    """Decode native-endian float32 values from a raw byte buffer."""
    if len(data) % 4:
        raise InvalidFormatError(f"Weight data of {len(data)} byte(s) is not a whole number of float32 values.")
    if not data:
        return torch.empty(0)
    return torch.frombuffer(bytearray(data), dtype=torch.float32)


def load_weights(directory: Path) -> List[torch.Tensor]:
    """
    Read the eight weight and bias tensors of the canonical network.

    Args:
        directory: Folder holding the raw float32 files.

    Returns:
        Tensors in `WEIGHT_FILES` order.
    """
    weights = []
    for name in WEIGHT_FILES:
        path = Path(directory) / name
        if not path.exists():
            raise FileNotFoundError(f"Weight file not found at {path}.")
        weights.append(read_floats(path.read_bytes()))
        logger.debug("Read %d value(s) from %s", weights[-1].numel(), path)
    return weights


def build_network(weights: Sequence[torch.Tensor]) -> Network:
    """
    Wire the canonical topology from its eight parameter tensors.

    Raises:
        BuildError: if any tensor does not match its layer's shape.
    """
    if len(weights) != len(WEIGHT_FILES):
        raise ValueError(f"Expected {len(WEIGHT_FILES)} weight tensors, got {len(weights)}.")
    return (
        NetworkBuilder()
        .shape(MNIST_SIZE, MNIST_SIZE, 1)
        .kernel(5, 5)
        .convolve(weights[0], weights[1])
        .shape(28, 28, 32)
        .maxpool(2, 2)
        .shape(14, 14, 32)
        .convolve(weights[2], weights[3])
        .shape(14, 14, 64)
        .maxpool(2, 2)
        .shape(7, 7, 64)
        .connect(weights[4], weights[5])
        .shape(1024)
        .connect(weights[6], weights[7])
        .shape(NUM_CLASSES)
        .build()
    )


class MnistNet:
    """Predicts digits from raw dataset bytes or canonical tensors."""

    def __init__(self, network: Network) -> None:
        self.network = network

    @classmethod
    def from_directory(cls, directory: Path) -> "MnistNet":
        return cls(build_network(load_weights(directory)))

    @staticmethod
    def read_image(image: bytes) -> torch.Tensor:
        """Dataset-polarity bytes to the ink-high tensor `byte / 255`."""
        if not image:
            return torch.empty(0)
        return torch.frombuffer(bytearray(image), dtype=torch.uint8).to(torch.float32) / 255.0

    def predict(self, image: bytes) -> Optional[int]:
        """Classify one image given as raw dataset bytes."""
        return self.predict_input(self.read_image(image))

    def predict_input(self, inputs: torch.Tensor) -> Optional[int]:
        """Classify one canonical tensor, e.g. a normalized drawing."""
        return self.network.predict(inputs)

    def predict_batch(self, images: bytes, count: int) -> List[int]:
        """Classify `count` images packed back to back as raw dataset bytes."""
        return self.network.predict_batch(self.read_image(images), count)


class ReferenceClassifier(nn.Module):
    """
    The canonical topology as an ordinary PyTorch module.

    Padding 2 keeps the 5x5 convolutions at their input size. Like the
    inference network, the last dense layer is followed by a ReLU.
    """

    def __init__(self) -> None:
        super().__init__()

        self.feature_extractor = nn.Sequential(
            nn.Conv2d(in_channels=1, out_channels=32, kernel_size=5, padding=2),
            nn.ReLU(),
            nn.MaxPool2d(kernel_size=2),
            nn.Conv2d(in_channels=32, out_channels=64, kernel_size=5, padding=2),
            nn.ReLU(),
            nn.MaxPool2d(kernel_size=2),
        )

        # Flattening a (batch, 64, 7, 7) map is channel-major, which is the
        # layout the inference filters use.
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Linear(in_features=64 * 7 * 7, out_features=1024),
            nn.ReLU(),
            nn.Linear(in_features=1024, out_features=NUM_CLASSES),
            nn.ReLU(),
        )

    def forward(self, inputs: torch.Tensor) -> torch.Tensor:
        """
        Args:
            inputs: A batch of images shaped `(batch_size, 1, 28, 28)`.

        Returns:
            Class scores of shape `(batch_size, 10)`.
        """
        return self.classifier(self.feature_extractor(inputs))

    def parameter_tensors(self) -> List[torch.Tensor]:
        """Weights and biases in `WEIGHT_FILES` order."""
        conv1, conv2 = self.feature_extractor[0], self.feature_extractor[3]
        fc1, fc2 = self.classifier[1], self.classifier[3]
        return [
            tensor.detach().to(torch.float32).contiguous()
            for layer in (conv1, conv2, fc1, fc2)
            for tensor in (layer.weight, layer.bias)
        ]


def export_weights(model: ReferenceClassifier, directory: Path) -> List[Path]:
    """Write the model's parameters as raw float32 files readable by `load_weights`."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    written = []
    for name, tensor in zip(WEIGHT_FILES, model.parameter_tensors()):
        path = directory / name
        path.write_bytes(tensor.cpu().numpy().tobytes())
        written.append(path)
    logger.info("Exported %d weight file(s) to %s", len(written), directory.resolve())
    return written
