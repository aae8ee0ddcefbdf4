"""
Parsers for the IDX image and label files of the handwritten digit dataset.

Both files start with a big-endian header followed by densely packed records:

- images: magic `0x00000803`, count, width, height, then `count*width*height`
  bytes, one image after another in row-major order;
- labels: magic `0x00000801`, count, then one byte (0-9) per label.

Raw image bytes keep the dataset's own polarity: `0` is background and `255`
is full ink. The network consumes `byte / 255` of those raw bytes directly.
`MnistImageSet.sample_inverse` flips them into the drawing polarity (dark ink
on white), which is what `ImageNormalizer` expects and what humans expect to
look at.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

import torch
from PIL import Image
from torch.utils.data import Dataset

from .errors import InvalidFormatError, SampleIndexError
from .reader import BinaryRecordReader

logger = logging.getLogger(__name__)

IMAGE_MAGIC = 0x00000803
LABEL_MAGIC = 0x00000801
IMAGE_HEADER_SIZE = 16
LABEL_HEADER_SIZE = 8


def _read_magic(reader: BinaryRecordReader, header_size: int, expected: int, kind: str) -> int:
    if len(reader) < header_size:
        raise InvalidFormatError(
            f"{kind} buffer holds {len(reader)} byte(s), shorter than the {header_size}-byte header."
        )
    magic = reader.read_u32_be(0)
    if magic != expected:
        raise InvalidFormatError(f"Bad {kind} magic number 0x{magic:08x}, expected 0x{expected:08x}.")
    return magic


class MnistImageSet:
    """Immutable, indexed access to the images of an IDX image file."""

    def __init__(self, data: bytes) -> None:
        self._reader = BinaryRecordReader(data)
        self.magic = _read_magic(self._reader, IMAGE_HEADER_SIZE, IMAGE_MAGIC, "image")
        self.count = self._reader.read_u32_be(4)
        self.width = self._reader.read_u32_be(8)
        self.height = self._reader.read_u32_be(12)

        if self.width == 0 or self.height == 0:
            raise InvalidFormatError(f"Image size {self.width}x{self.height} has no pixels.")

        expected = IMAGE_HEADER_SIZE + self.count * self.stride
        if len(self._reader) < expected:
            raise InvalidFormatError(
                f"Image buffer is truncated: {len(self._reader)} byte(s), "
                f"{self.count} image(s) of {self.width}x{self.height} need {expected}."
            )
        logger.debug("Parsed %d image(s) of %dx%d", self.count, self.width, self.height)

    @property
    def stride(self) -> int:
        """Number of bytes per image."""
        return self.width * self.height

    @property
    def image_size(self) -> Tuple[int, int]:
        return self.width, self.height

    def __len__(self) -> int:
        return self.count

    def _offset(self, index: int) -> int:
        if index < 0 or index >= self.count:
            raise SampleIndexError(f"Image index {index} is out of range for {self.count} image(s).")
        return IMAGE_HEADER_SIZE + self.stride * index

    def sample(self, index: int) -> bytes:
        """Raw bytes of image `index`, row-major, dataset polarity."""
        return self._reader.read_bytes(self._offset(index), self.stride)

    def samples(self, indices: Iterable[int]) -> bytes:
        """
        Concatenate the raw bytes of several images.

        Args:
            indices: Image indices in the order the caller wants them packed.
                Duplicates are allowed.

        Returns:
            `len(indices) * stride` bytes; block `i` belongs to `indices[i]`.
        """
        return b"".join(self.sample(index) for index in indices)

    def samples_range(self, start: int, stop: int) -> bytes:
        """Contiguous bytes of images `[start, stop)` in a single slice."""
        if start < 0 or stop > self.count or start > stop:
            raise SampleIndexError(f"Image range [{start}, {stop}) is out of range for {self.count} image(s).")
        offset = IMAGE_HEADER_SIZE + self.stride * start
        return self._reader.read_bytes(offset, self.stride * (stop - start))

    def sample_inverse(self, index: int) -> bytes:
        """Image `index` with every byte replaced by `255 - byte` (drawing polarity)."""
        return bytes(255 - value for value in self.sample(index))

    def tensor(self, index: int) -> torch.Tensor:
        """Canonical float tensor of image `index`: `byte / 255`, ink-high."""
        raw = torch.frombuffer(bytearray(self.sample(index)), dtype=torch.uint8)
        return raw.to(torch.float32) / 255.0

    def image(self, index: int) -> Image.Image:
        """Grayscale picture of image `index`: black ink on white."""
        return Image.frombytes("L", self.image_size, self.sample_inverse(index))

    def inverted_image(self, index: int) -> Image.Image:
        """Grayscale picture of the raw bytes: white ink on black."""
        return Image.frombytes("L", self.image_size, self.sample(index))

    def transparent_image(self, index: int) -> Image.Image:
        """Black RGBA picture of image `index` whose alpha channel is the raw ink."""
        alpha = Image.frombytes("L", self.image_size, self.sample(index))
        black = Image.new("L", self.image_size, 0)
        return Image.merge("RGBA", (black, black, black, alpha))


class MnistLabelSet:
    """Immutable, indexed access to the labels of an IDX label file."""

    def __init__(self, data: bytes) -> None:
        self._reader = BinaryRecordReader(data)
        self.magic = _read_magic(self._reader, LABEL_HEADER_SIZE, LABEL_MAGIC, "label")
        self.count = self._reader.read_u32_be(4)

        expected = LABEL_HEADER_SIZE + self.count
        if len(self._reader) < expected:
            raise InvalidFormatError(
                f"Label buffer is truncated: {len(self._reader)} byte(s), {self.count} label(s) need {expected}."
            )
        logger.debug("Parsed %d label(s)", self.count)

    def __len__(self) -> int:
        return self.count

    def label(self, index: int) -> int:
        if index < 0 or index >= self.count:
            raise SampleIndexError(f"Label index {index} is out of range for {self.count} label(s).")
        return self._reader.read_byte(LABEL_HEADER_SIZE + index)

    def labels(self, indices: Iterable[int]) -> List[int]:
        return [self.label(index) for index in indices]


def load_dataset(data: bytes) -> MnistImageSet:
    """Parse an IDX image buffer. Raises `InvalidFormatError` on a bad header."""
    images = MnistImageSet(data)
    logger.info("Loaded %d image(s) of %dx%d", images.count, images.width, images.height)
    return images


def load_labels(data: bytes) -> MnistLabelSet:
    """Parse an IDX label buffer. Raises `InvalidFormatError` on a bad header."""
    labels = MnistLabelSet(data)
    logger.info("Loaded %d label(s)", labels.count)
    return labels


class MnistDataset(Dataset[Tuple[torch.Tensor, int]]):
    """Pairs an image set with its label set for use with a `DataLoader`."""

    def __init__(self, images: MnistImageSet, labels: MnistLabelSet) -> None:
        if images.count != labels.count:
            raise InvalidFormatError(
                f"Image count {images.count} does not match label count {labels.count}."
            )
        self.images = images
        self.labels = labels

    def __len__(self) -> int:
        return self.images.count

    def __getitem__(self, idx: int) -> Tuple[torch.Tensor, int]:
        return self.images.tensor(idx), self.labels.label(idx)
