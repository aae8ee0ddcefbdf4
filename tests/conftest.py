from __future__ import annotations

import struct
from typing import Callable, List, Sequence

import pytest
import torch

from digitnet.builder import NetworkBuilder
from digitnet.network import Network


def idx_images(images: Sequence[bytes], width: int, height: int, magic: int = 0x803) -> bytes:
    return struct.pack(">IIII", magic, len(images), width, height) + b"".join(images)


def idx_labels(labels: Sequence[int], magic: int = 0x801) -> bytes:
    return struct.pack(">II", magic, len(labels)) + bytes(labels)


@pytest.fixture
def make_images() -> Callable[..., bytes]:
    return idx_images


@pytest.fixture
def make_labels() -> Callable[..., bytes]:
    return idx_labels


@pytest.fixture
def three_images() -> List[bytes]:
    """Three distinct 2x2 images."""
    return [bytes([0, 64, 128, 255]), bytes([10, 20, 30, 40]), bytes([255, 255, 0, 0])]


@pytest.fixture
def tiny_network() -> Network:
    """conv 3x3 -> maxpool 2x2 -> dense, over a 4x4x1 input, with seeded weights."""
    generator = torch.Generator().manual_seed(7)
    return (
        NetworkBuilder()
        .shape(4, 4, 1)
        .kernel(3, 3)
        .convolve(torch.randn(2 * 1 * 3 * 3, generator=generator), torch.randn(2, generator=generator))
        .shape(4, 4, 2)
        .maxpool(2, 2)
        .shape(2, 2, 2)
        .connect(torch.randn(8 * 3, generator=generator), torch.randn(3, generator=generator))
        .shape(3)
        .build()
    )
