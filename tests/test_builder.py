import pytest
import torch

from digitnet.builder import NetworkBuilder
from digitnet.errors import BuildError
from digitnet.layers import (
    Activation,
    ConvolutionDescriptor,
    ConvolutionFilter,
    FullyConnectedDescriptor,
    MaxPoolDescriptor,
    MaxPoolFilter,
    Shape,
    compute_padding,
)


def test_same_padding_for_5x5_convolution():
    assert compute_padding(Shape(28, 28, 1), Shape(28, 28, 32), (5, 5), (1, 1)) == (2, 2)


def test_pooling_padding_uses_kernel_as_stride():
    assert compute_padding(Shape(28, 28, 32), Shape(14, 14, 32), (2, 2), (2, 2)) == (0, 0)


def test_padding_cannot_be_negative():
    with pytest.raises(BuildError):
        compute_padding(Shape(28, 28, 1), Shape(10, 10, 1), (3, 3), (1, 1))


def test_shape_dimensions_must_be_positive():
    with pytest.raises(BuildError):
        Shape(0, 28, 1)
    assert Shape(1024).size == 1024
    assert Shape(7, 7, 64).size == 3136


def test_shapes_are_back_filled_into_layers():
    builder = (
        NetworkBuilder()
        .shape(28, 28, 1)
        .kernel(5, 5)
        .convolve(torch.zeros(800), torch.zeros(32))
        .shape(28, 28, 32)
        .maxpool(2, 2)
        .shape(14, 14, 32)
        .connect(torch.zeros(14 * 14 * 32 * 10), torch.zeros(10))
        .shape(10)
    )

    layers = builder.layers()
    assert [type(descriptor) for descriptor, _ in layers] == [
        ConvolutionDescriptor,
        MaxPoolDescriptor,
        FullyConnectedDescriptor,
    ]
    assert [descriptor.input for descriptor, _ in layers] == [Shape(28, 28, 1), Shape(28, 28, 32), Shape(14, 14, 32)]
    assert [output for _, output in layers] == [Shape(28, 28, 32), Shape(14, 14, 32), Shape(10)]


def test_layer_without_following_shape_stays_open():
    builder = (
        NetworkBuilder()
        .shape(4, 4, 1)
        .kernel(3, 3)
        .convolve(torch.zeros(9), torch.zeros(1))
        .maxpool(2, 2)
        .shape(2, 2, 1)
    )

    outputs = [output for _, output in builder.layers()]
    assert outputs == [None, Shape(2, 2, 1)]
    with pytest.raises(BuildError):
        builder.build()


def test_repeated_shape_overwrites_layer_output():
    builder = NetworkBuilder().shape(4).connect(torch.zeros(8), torch.zeros(2)).shape(3).shape(2)

    assert [output for _, output in builder.layers()] == [Shape(2)]
    assert builder.build().output_shape == Shape(2)


def test_last_layer_needs_an_output_shape():
    builder = NetworkBuilder().shape(4).connect(torch.zeros(8), torch.zeros(2))
    with pytest.raises(BuildError):
        builder.build()


def test_layers_require_an_input_shape():
    with pytest.raises(BuildError):
        NetworkBuilder().maxpool(2, 2)
    with pytest.raises(BuildError):
        NetworkBuilder().connect([1.0], [0.0])


def test_convolution_requires_a_kernel():
    with pytest.raises(BuildError):
        NetworkBuilder().shape(4, 4, 1).convolve(torch.zeros(9), torch.zeros(1))


def test_empty_builder_cannot_build():
    with pytest.raises(BuildError):
        NetworkBuilder().build()
    with pytest.raises(BuildError):
        NetworkBuilder().shape(28, 28, 1).build()


def test_weight_size_mismatch_aborts_build():
    builder = (
        NetworkBuilder()
        .shape(4, 4, 1)
        .kernel(3, 3)
        .convolve(torch.zeros(9), torch.zeros(1))
        .shape(4, 4, 1)
        .connect(torch.zeros(15), torch.zeros(1))
        .shape(1)
    )
    with pytest.raises(BuildError):
        builder.build()


def test_bias_size_mismatch_aborts_build():
    builder = NetworkBuilder().shape(4).connect(torch.zeros(8), torch.zeros(3)).shape(2)
    with pytest.raises(BuildError):
        builder.build()


def test_declared_output_must_match_convolution_geometry():
    builder = (
        NetworkBuilder()
        .shape(28, 28, 1)
        .kernel(5, 5)
        .convolve(torch.zeros(25), torch.zeros(1))
        .shape(27, 27, 1)
    )
    with pytest.raises(BuildError):
        builder.build()


def test_pooling_keeps_channels():
    builder = NetworkBuilder().shape(4, 4, 2).maxpool(2, 2).shape(2, 2, 3)
    with pytest.raises(BuildError):
        builder.build()


def test_resolved_filters_carry_geometry():
    network = (
        NetworkBuilder()
        .shape(8, 8, 1)
        .kernel(2, 2)
        .stride(2, 2)
        .activation(Activation.TANH)
        .convolve(torch.zeros(4 * 3), torch.zeros(3))
        .shape(4, 4, 3)
        .maxpool(2, 2)
        .shape(2, 2, 3)
        .build()
    )

    conv, pool = network.filters
    assert isinstance(conv, ConvolutionFilter)
    assert conv.stride == (2, 2)
    assert conv.padding == (0, 0)
    assert conv.activation is Activation.TANH
    assert tuple(conv.weight.shape) == (3, 1, 2, 2)
    assert isinstance(pool, MaxPoolFilter)
    assert pool.stride == (2, 2)
    assert network.input_shape == Shape(8, 8, 1)
    assert network.output_shape == Shape(2, 2, 3)


def test_activation_applies_to_following_layers():
    builder = (
        NetworkBuilder()
        .shape(2)
        .connect(torch.zeros(4), torch.zeros(2))
        .shape(2)
        .activation("identity")
        .connect(torch.zeros(4), torch.zeros(2))
        .shape(2)
    )

    first, second = (descriptor for descriptor, _ in builder.layers())
    assert first.activation is Activation.RELU
    assert second.activation is Activation.IDENTITY


def test_filters_own_a_copy_of_their_weights():
    weights = torch.ones(4)
    network = NetworkBuilder().shape(2).connect(weights, torch.zeros(2)).shape(2).build()
    weights.fill_(5.0)

    assert torch.equal(network.filters[0].weight, torch.ones(2, 2))
