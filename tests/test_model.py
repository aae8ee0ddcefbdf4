import pytest
import torch

from digitnet.config import WEIGHT_FILES
from digitnet.errors import BuildError, InvalidFormatError
from digitnet.layers import ConvolutionFilter, FullyConnectedFilter, MaxPoolFilter, Shape
from digitnet.model import (
    MnistNet,
    ReferenceClassifier,
    build_network,
    export_weights,
    load_weights,
    read_floats,
)
from digitnet.network import argmax


@pytest.fixture
def reference() -> ReferenceClassifier:
    torch.manual_seed(0)
    return ReferenceClassifier().eval()


@pytest.fixture
def weights_dir(tmp_path, reference):
    export_weights(reference, tmp_path)
    return tmp_path


def test_exported_files_have_canonical_sizes(weights_dir):
    sizes = [tensor.numel() for tensor in load_weights(weights_dir)]
    assert sizes == [5 * 5 * 1 * 32, 32, 5 * 5 * 32 * 64, 64, 3136 * 1024, 1024, 1024 * 10, 10]
    assert sorted(path.name for path in weights_dir.iterdir()) == sorted(WEIGHT_FILES)


def test_canonical_topology(weights_dir):
    network = build_network(load_weights(weights_dir))

    kinds = [type(layer) for layer in network.filters]
    assert kinds == [
        ConvolutionFilter,
        MaxPoolFilter,
        ConvolutionFilter,
        MaxPoolFilter,
        FullyConnectedFilter,
        FullyConnectedFilter,
    ]
    assert network.filters[0].padding == (2, 2)
    assert network.filters[2].padding == (2, 2)
    assert network.input_shape == Shape(28, 28, 1)
    assert network.output_shape == Shape(10)


def test_network_reproduces_reference_module(reference, weights_dir):
    net = MnistNet.from_directory(weights_dir)
    images = torch.rand(3, 1, 28, 28, generator=torch.Generator().manual_seed(1))

    with torch.inference_mode():
        expected = reference(images)

    rows = net.network.batch(images, 3)
    assert len(rows) == 3
    for row, logits in zip(rows, expected):
        assert torch.allclose(row, logits, atol=1e-4)
    assert net.network.predict_batch(images, 3) == [argmax(logits.tolist()) for logits in expected]


def test_predictions_from_raw_dataset_bytes(weights_dir):
    net = MnistNet.from_directory(weights_dir)
    generator = torch.Generator().manual_seed(2)
    images = [bytes(torch.randint(0, 256, (784,), generator=generator).tolist()) for _ in range(4)]

    singles = [net.predict(image) for image in images]
    assert net.predict_batch(b"".join(images), 4) == singles
    assert all(0 <= label < 10 for label in singles)
    assert singles[0] == net.predict_input(MnistNet.read_image(images[0]))


def test_read_image_scales_bytes():
    assert MnistNet.read_image(bytes([0, 51, 255])).tolist() == pytest.approx([0.0, 0.2, 1.0])


def test_truncated_image_bytes_predict_nothing(weights_dir):
    net = MnistNet.from_directory(weights_dir)
    assert net.predict(bytes(783)) is None
    assert net.predict_batch(bytes(784 * 2 - 1), 2) == []


def test_read_floats_roundtrip_and_errors():
    values = torch.tensor([1.5, -2.0, 0.25])
    assert torch.equal(read_floats(values.numpy().tobytes()), values)
    with pytest.raises(InvalidFormatError):
        read_floats(b"\x00\x00\x80")


def test_missing_weight_file(weights_dir):
    (weights_dir / WEIGHT_FILES[3]).unlink()
    with pytest.raises(FileNotFoundError):
        load_weights(weights_dir)


def test_mismatched_weights_do_not_build(weights_dir):
    weights = load_weights(weights_dir)
    with pytest.raises(ValueError):
        build_network(weights[:-1])

    weights[4] = weights[4][:-1]
    with pytest.raises(BuildError):
        build_network(weights)
