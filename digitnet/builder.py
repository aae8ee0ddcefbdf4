"""
Fluent construction of a `Network` from declared shapes and layers.

Shapes and layers are declared in the order data flows through them::

    network = (
        NetworkBuilder()
        .shape(28, 28, 1)
        .kernel(5, 5)
        .convolve(weights, bias)
        .shape(28, 28, 32)
        .maxpool(2, 2)
        .shape(14, 14, 32)
        ...
        .build()
    )

Every `shape` call becomes the input of the layers that follow it and the
output of the layer right before it. A layer with no shape declared after it
cannot be built.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple, Union

import torch

from .errors import BuildError
from .layers import (
    Activation,
    ConvolutionDescriptor,
    FullyConnectedDescriptor,
    LayerDescriptor,
    MaxPoolDescriptor,
    Shape,
    resolve_filter,
)
from .network import Network

logger = logging.getLogger(__name__)


def _as_parameters(values: Any) -> torch.Tensor:
    return torch.as_tensor(values, dtype=torch.float32).reshape(-1)


class NetworkBuilder:
    """Records shape declarations and layers, then resolves them into filters."""

    def __init__(self) -> None:
        self._events: List[Union[Shape, LayerDescriptor]] = []
        self._input: Optional[Shape] = None
        self._kernel: Optional[Tuple[int, int]] = None
        self._stride: Tuple[int, int] = (1, 1)
        self._activation = Activation.RELU

    def shape(self, width: int, height: int = 1, channels: int = 1) -> "NetworkBuilder":
        """Declare the shape flowing out of the last layer and into the next one."""
        shape = Shape(width, height, channels)
        self._input = shape
        self._events.append(shape)
        return self

    def kernel(self, width: int, height: int) -> "NetworkBuilder":
        self._kernel = (width, height)
        return self

    def stride(self, x: int, y: int) -> "NetworkBuilder":
        self._stride = (x, y)
        return self

    def activation(self, function: Activation) -> "NetworkBuilder":
        self._activation = Activation(function)
        return self

    def _current_input(self, layer: str) -> Shape:
        if self._input is None:
            raise BuildError(f"Declare an input shape before adding a {layer} layer.")
        return self._input

    def convolve(self, weights: Any, bias: Any) -> "NetworkBuilder":
        """Append a convolution using the current kernel, stride and activation."""
        input_shape = self._current_input("convolution")
        if self._kernel is None:
            raise BuildError("Set the kernel size with kernel() before adding a convolution layer.")
        self._events.append(
            ConvolutionDescriptor(
                input=input_shape,
                kernel=self._kernel,
                weights=_as_parameters(weights),
                bias=_as_parameters(bias),
                stride=self._stride,
                activation=self._activation,
            )
        )
        return self

    def maxpool(self, width: int, height: int) -> "NetworkBuilder":
        input_shape = self._current_input("max pooling")
        self._events.append(MaxPoolDescriptor(input=input_shape, kernel=(width, height)))
        return self

    def connect(self, weights: Any, bias: Any) -> "NetworkBuilder":
        """Append a fully connected layer over the flattened current input."""
        input_shape = self._current_input("fully connected")
        self._events.append(
            FullyConnectedDescriptor(
                input=input_shape,
                weights=_as_parameters(weights),
                bias=_as_parameters(bias),
                activation=self._activation,
            )
        )
        return self

    def layers(self) -> List[Tuple[LayerDescriptor, Optional[Shape]]]:
        """
        Pair every declared layer with its output shape.

        A shape declaration closes the most recently added layer. Layers that
        were followed directly by another layer (or by nothing) are paired
        with `None`.
        """
        stitched: List[Tuple[LayerDescriptor, Optional[Shape]]] = []
        last_was_layer = False
        for event in self._events:
            if isinstance(event, Shape):
                if stitched:
                    stitched[-1] = (stitched[-1][0], event)
                last_was_layer = False
            else:
                if last_was_layer:
                    logger.debug("%s is followed by another layer without a shape", stitched[-1][0])
                stitched.append((event, None))
                last_was_layer = True
        return stitched

    def build(self) -> Network:
        """
        Resolve every layer into a filter.

        Raises:
            BuildError: if there are no layers, a layer has no output shape,
                or any filter cannot be constructed. No partial network is
                ever returned.
        """
        layers = self.layers()
        if not layers:
            raise BuildError("The network has no layers.")

        filters = []
        for index, (descriptor, output_shape) in enumerate(layers):
            try:
                filters.append(resolve_filter(descriptor, output_shape))
            except BuildError as error:
                logger.error("Cannot build layer %d: %s", index, error)
                raise

        network = Network(filters)
        logger.info(
            "Built network with %d filter(s): %s -> %s",
            len(filters),
            network.input_shape,
            network.output_shape,
        )
        return network
