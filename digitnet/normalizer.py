"""
Turn freehand drawings into the 28x28 rasters the digit network expects.

Drawings use the *drawing polarity*: dark ink on a white background. The
dataset digits were produced by fitting each digit's ink into a box around
its center of mass; `ImageNormalizer.mnist` reproduces that placement, and
`ImageNormalizer.to_tensor` converts the result into the network's ink-high
float representation (`1 - byte / 255`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import torch
import torchvision.transforms.functional as TF
from PIL import Image

from .config import MNIST_SIZE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def min_x(self) -> float:
        return self.x

    @property
    def min_y(self) -> float:
        return self.y

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height


class ImageNormalizer:
    """Center-of-mass placement of drawings into the canonical raster."""

    def __init__(self, size: int = MNIST_SIZE) -> None:
        self.size = size

    def from_raw(self, raw: bytes, width: int, height: int) -> Optional[Image.Image]:
        """Wrap row-major 8-bit grayscale bytes; `None` for empty or mismatched input."""
        if width <= 0 or height <= 0:
            return None
        if len(raw) != width * height:
            logger.warning("Raster of %dx%d needs %d byte(s), got %d", width, height, width * height, len(raw))
            return None
        return Image.frombytes("L", (width, height), bytes(raw))

    def grayscale(self, image: Image.Image) -> Optional[Image.Image]:
        """
        Flatten any PIL image into 8-bit grayscale on a white background.

        Transparent pixels (e.g. a canvas stroked on a clear layer) become
        white, so alpha acts as ink coverage.
        """
        if image.width == 0 or image.height == 0:
            return None
        if image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info):
            rgba = image.convert("RGBA")
            background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
            return Image.alpha_composite(background, rgba).convert("L")
        if image.mode != "L":
            return image.convert("L")
        return image

    def center_of_mass(self, image: Image.Image) -> Rect:
        """
        Square around the ink's center of mass that just covers every ink pixel.

        Each pixel weighs `1 - byte / 255`. A blank image has no mass and
        yields its own bounds.
        """
        gray = self.grayscale(image)
        bounds = Rect(0.0, 0.0, float(image.width), float(image.height))
        if gray is None:
            return bounds

        pixels = TF.pil_to_tensor(gray)[0].to(torch.float64)
        mass_map = 1.0 - pixels / 255.0
        rows, cols = torch.nonzero(mass_map > 0, as_tuple=True)
        if rows.numel() == 0:
            return bounds

        weights = mass_map[rows, cols]
        mass = weights.sum()
        center_x = float((weights * cols).sum() / mass)
        center_y = float((weights * rows).sum() / mass)

        half = max(
            center_x - float(cols.min()),
            float(cols.max()) - center_x,
            center_y - float(rows.min()),
            float(rows.max()) - center_y,
        )
        return Rect(center_x - half, center_y - half, 2 * half, 2 * half)

    def mnist(self, image: Image.Image) -> Optional[Image.Image]:
        """
        Scale and shift the drawing so its mass square fills the target raster.

        Returns:
            A `size x size` grayscale image, or `None` when the drawing is
            empty, blank, or its ink collapses to a single point.
        """
        gray = self.grayscale(image)
        if gray is None:
            return None

        if gray.getextrema()[0] == 255:
            logger.debug("A %dx%d drawing has no ink", gray.width, gray.height)
            return None

        mass = self.center_of_mass(gray)
        if mass.width <= 0 or mass.height <= 0:
            logger.debug("Ink of a %dx%d drawing has no extent", gray.width, gray.height)
            return None

        scale = max(self.size / mass.width, self.size / mass.height)

        # Box-average large drawings by a whole factor first so the affine
        # sampling below does not alias. Memory stays bounded by the source.
        factor = max(1, int(1 / scale))
        source = gray.reduce(factor) if factor > 1 else gray

        # Map each raster pixel back onto the mass square in source pixels.
        step = 1 / (scale * factor)
        return source.transform(
            (self.size, self.size),
            Image.Transform.AFFINE,
            (step, 0, mass.min_x / factor, 0, step, mass.min_y / factor),
            resample=Image.Resampling.BILINEAR,
            fillcolor=255,
        )

    def center_crop_resize(self, image: Image.Image, target: Tuple[int, int]) -> Optional[Image.Image]:
        """Scale the image to cover `target` and crop the overflow evenly."""
        gray = self.grayscale(image)
        if gray is None or target[0] <= 0 or target[1] <= 0:
            return None
        scale = max(target[0] / gray.width, target[1] / gray.height)
        scaled_size = (max(1, round(gray.width * scale)), max(1, round(gray.height * scale)))
        scaled = gray.resize(scaled_size, Image.Resampling.BILINEAR)
        left = (scaled_size[0] - target[0]) // 2
        top = (scaled_size[1] - target[1]) // 2
        return scaled.crop((left, top, left + target[0], top + target[1]))

    def to_tensor(self, raster: Union[Image.Image, bytes]) -> torch.Tensor:
        """Flat float tensor `1 - byte / 255` of a drawing-polarity raster."""
        if isinstance(raster, Image.Image):
            gray = self.grayscale(raster)
            if gray is None:
                return torch.empty(0)
            pixels = TF.pil_to_tensor(gray).reshape(-1)
        elif len(raster) == 0:
            return torch.empty(0)
        else:
            pixels = torch.frombuffer(bytearray(raster), dtype=torch.uint8)
        return 1.0 - pixels.to(torch.float32) / 255.0

    def mnist_data(self, image: Image.Image) -> Optional[torch.Tensor]:
        raster = self.mnist(image)
        if raster is None:
            return None
        return self.to_tensor(raster)

    def normalize(self, raw: bytes, width: int, height: int) -> Optional[torch.Tensor]:
        """Raw grayscale drawing bytes to a canonical tensor, or `None`."""
        image = self.from_raw(raw, width, height)
        if image is None:
            return None
        return self.mnist_data(image)
