"""
Layer descriptors and the executable filters they resolve into.

A descriptor is the declarative half of a layer: the input shape it was
declared against, its kernel/stride settings and its parameters. The output
shape is not part of a descriptor; the builder supplies it when the layer is
resolved with `resolve_filter`.

Filters work on flat, channel-major feature maps batched along the first
dimension: a filter with input shape `W x H x C` consumes tensors of shape
`(batch, C*H*W)` laid out as `[channel][row][column]` and produces
`(batch, output.size)`.

Parameter layouts:

- convolution weights: `[out_channels][in_channels][kernel_h][kernel_w]`;
- fully connected weights: `[out_size][in_size]`;
- biases: one value per output channel (or output element).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

import torch
import torch.nn.functional as F
from torch import nn

from .errors import BuildError


@dataclass(frozen=True)
class Shape:
    """Width x height x channels of a feature map; a vector is `n x 1 x 1`."""

    width: int
    height: int = 1
    channels: int = 1

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0 or self.channels <= 0:
            raise BuildError(f"Shape dimensions must be positive, got {self}.")

    @property
    def size(self) -> int:
        return self.width * self.height * self.channels

    def __str__(self) -> str:
        return f"{self.width}x{self.height}x{self.channels}"


class Activation(Enum):
    """Element-wise function applied after a convolution or dense layer."""

    IDENTITY = "identity"
    RELU = "relu"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    ABS = "abs"

    def apply(self, values: torch.Tensor) -> torch.Tensor:
        return _ACTIVATIONS[self](values)


_ACTIVATIONS: Dict[Activation, Callable[[torch.Tensor], torch.Tensor]] = {
    Activation.IDENTITY: lambda values: values,
    Activation.RELU: F.relu,
    Activation.SIGMOID: torch.sigmoid,
    Activation.TANH: torch.tanh,
    Activation.ABS: torch.abs,
}


@dataclass(frozen=True, eq=False)
class ConvolutionDescriptor:
    input: Shape
    kernel: Tuple[int, int]
    weights: torch.Tensor = field(repr=False)
    bias: torch.Tensor = field(repr=False)
    stride: Tuple[int, int] = (1, 1)
    activation: Activation = Activation.RELU


@dataclass(frozen=True, eq=False)
class MaxPoolDescriptor:
    input: Shape
    kernel: Tuple[int, int]

    @property
    def stride(self) -> Tuple[int, int]:
        # Pooling windows never overlap.
        return self.kernel


@dataclass(frozen=True, eq=False)
class FullyConnectedDescriptor:
    input: Shape
    weights: torch.Tensor = field(repr=False)
    bias: torch.Tensor = field(repr=False)
    activation: Activation = Activation.RELU


LayerDescriptor = Union[ConvolutionDescriptor, MaxPoolDescriptor, FullyConnectedDescriptor]


def compute_padding(
    input_shape: Shape,
    output_shape: Shape,
    kernel: Tuple[int, int],
    stride: Tuple[int, int],
) -> Tuple[int, int]:
    """
    Derive the symmetric padding that reconciles input and output sizes.

    `pad = (stride * (out - 1) + kernel - in) // 2` on each axis.

    Raises:
        BuildError: if the declared sizes would need negative padding.
    """
    pads = []
    for axis, size_in, size_out, k, s in (
        ("x", input_shape.width, output_shape.width, kernel[0], stride[0]),
        ("y", input_shape.height, output_shape.height, kernel[1], stride[1]),
    ):
        extra = s * (size_out - 1) + k - size_in
        if extra < 0:
            raise BuildError(
                f"Output {output_shape} is too small for input {input_shape} "
                f"with kernel {kernel} and stride {stride} ({axis} axis)."
            )
        pads.append(extra // 2)
    return pads[0], pads[1]


def _window_output(size_in: int, kernel: int, stride: int, padding: int) -> int:
    return (size_in + 2 * padding - kernel) // stride + 1


def _check_window(
    kind: str,
    input_shape: Shape,
    output_shape: Shape,
    kernel: Tuple[int, int],
    stride: Tuple[int, int],
    padding: Tuple[int, int],
) -> None:
    if kernel[0] <= 0 or kernel[1] <= 0 or stride[0] <= 0 or stride[1] <= 0:
        raise BuildError(f"{kind} kernel {kernel} and stride {stride} must be positive.")
    produced = (
        _window_output(input_shape.width, kernel[0], stride[0], padding[0]),
        _window_output(input_shape.height, kernel[1], stride[1], padding[1]),
    )
    if produced != (output_shape.width, output_shape.height):
        raise BuildError(
            f"{kind} over {input_shape} with kernel {kernel}, stride {stride} and padding "
            f"{padding} produces {produced[0]}x{produced[1]}, declared {output_shape}."
        )


def _parameters(values: torch.Tensor, expected: int, what: str) -> torch.Tensor:
    if values.numel() != expected:
        raise BuildError(f"{what} has {values.numel()} value(s), expected {expected}.")
    return values.detach().to(torch.float32).reshape(-1).clone()


class Filter(nn.Module):
    """Executable layer with fixed input and output shapes."""

    def __init__(self, input_shape: Shape, output_shape: Shape) -> None:
        super().__init__()
        self.input_shape = input_shape
        self.output_shape = output_shape

    def extra_repr(self) -> str:
        return f"{self.input_shape} -> {self.output_shape}"


class ConvolutionFilter(Filter):
    """2-D convolution with bias and activation."""

    def __init__(self, descriptor: ConvolutionDescriptor, output_shape: Shape) -> None:
        super().__init__(descriptor.input, output_shape)
        in_channels = descriptor.input.channels
        out_channels = output_shape.channels
        kernel_w, kernel_h = descriptor.kernel

        self.stride = descriptor.stride
        self.padding = compute_padding(descriptor.input, output_shape, descriptor.kernel, descriptor.stride)
        _check_window("Convolution", descriptor.input, output_shape, descriptor.kernel, self.stride, self.padding)
        self.activation = descriptor.activation

        weights = _parameters(
            descriptor.weights, out_channels * in_channels * kernel_h * kernel_w, "Convolution weights"
        )
        bias = _parameters(descriptor.bias, out_channels, "Convolution bias")
        self.register_buffer("weight", weights.reshape(out_channels, in_channels, kernel_h, kernel_w))
        self.register_buffer("bias", bias)

    def forward(self, inputs: torch.Tensor) -> torch.Tensor:
        shape = self.input_shape
        maps = inputs.reshape(-1, shape.channels, shape.height, shape.width)
        # torch orders stride/padding as (rows, columns).
        outputs = F.conv2d(
            maps,
            self.weight,
            self.bias,
            stride=(self.stride[1], self.stride[0]),
            padding=(self.padding[1], self.padding[0]),
        )
        return self.activation.apply(outputs).flatten(1)


class MaxPoolFilter(Filter):
    """Max over non-overlapping kernel windows, channel by channel."""

    def __init__(self, descriptor: MaxPoolDescriptor, output_shape: Shape) -> None:
        super().__init__(descriptor.input, output_shape)
        if descriptor.input.channels != output_shape.channels:
            raise BuildError(
                f"Max pooling keeps the channel count: input {descriptor.input}, declared {output_shape}."
            )
        self.kernel = descriptor.kernel
        self.stride = descriptor.stride
        self.padding = compute_padding(descriptor.input, output_shape, self.kernel, self.stride)
        if 2 * self.padding[0] > self.kernel[0] or 2 * self.padding[1] > self.kernel[1]:
            raise BuildError(f"Max pooling padding {self.padding} exceeds half of kernel {self.kernel}.")
        _check_window("Max pooling", descriptor.input, output_shape, self.kernel, self.stride, self.padding)

    def forward(self, inputs: torch.Tensor) -> torch.Tensor:
        shape = self.input_shape
        maps = inputs.reshape(-1, shape.channels, shape.height, shape.width)
        outputs = F.max_pool2d(
            maps,
            kernel_size=(self.kernel[1], self.kernel[0]),
            stride=(self.stride[1], self.stride[0]),
            padding=(self.padding[1], self.padding[0]),
        )
        return outputs.flatten(1)


class FullyConnectedFilter(Filter):
    """Dense matrix multiply over the flattened input, with bias and activation."""

    def __init__(self, descriptor: FullyConnectedDescriptor, output_shape: Shape) -> None:
        super().__init__(descriptor.input, output_shape)
        in_size = descriptor.input.size
        out_size = output_shape.size
        self.activation = descriptor.activation

        weights = _parameters(descriptor.weights, in_size * out_size, "Fully connected weights")
        bias = _parameters(descriptor.bias, out_size, "Fully connected bias")
        self.register_buffer("weight", weights.reshape(out_size, in_size))
        self.register_buffer("bias", bias)

    def forward(self, inputs: torch.Tensor) -> torch.Tensor:
        flat = inputs.reshape(-1, self.input_shape.size)
        return self.activation.apply(F.linear(flat, self.weight, self.bias))


def resolve_filter(descriptor: LayerDescriptor, output_shape: Optional[Shape]) -> Filter:
    """
    Turn a descriptor and its back-filled output shape into a filter.

    Raises:
        BuildError: if the output shape is missing or the parameters do not
            fit the declared shapes.
    """
    if output_shape is None:
        raise BuildError(
            f"{type(descriptor).__name__} over {descriptor.input} has no output shape; "
            "declare one with shape() after the layer."
        )
    if isinstance(descriptor, ConvolutionDescriptor):
        return ConvolutionFilter(descriptor, output_shape)
    if isinstance(descriptor, MaxPoolDescriptor):
        return MaxPoolFilter(descriptor, output_shape)
    if isinstance(descriptor, FullyConnectedDescriptor):
        return FullyConnectedFilter(descriptor, output_shape)
    raise BuildError(f"Unknown layer descriptor {descriptor!r}.")
