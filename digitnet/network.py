"""
Forward passes over a resolved chain of filters.

A `Network` never raises for numeric problems during inference. Any failure
inside the chain (wrong input length, a torch runtime error) is logged and the
whole pass yields an empty result: an empty tensor from `apply`, an empty list
from `batch` and `predict_batch`, `None` from `predict`.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import torch
from torch import nn

from .errors import BuildError
from .layers import Filter, Shape

logger = logging.getLogger(__name__)


def argmax(values: Sequence[float]) -> int:
    """Index of the largest value; the lowest index wins ties."""
    best = 0
    for index in range(1, len(values)):
        if values[index] > values[best]:
            best = index
    return best


def _as_vector(values: Any) -> torch.Tensor:
    return torch.as_tensor(values, dtype=torch.float32).reshape(-1)


class Network:
    """
    Ordered, immutable chain of filters.

    The builder guarantees that each filter's output shape equals the next
    filter's input shape; this is not re-validated here. A network holds no
    mutable state, so one instance can serve concurrent inference calls.
    """

    def __init__(self, filters: Sequence[Filter]) -> None:
        if not filters:
            raise BuildError("A network needs at least one filter.")
        self._chain = nn.Sequential(*filters).eval()
        self._chain.requires_grad_(False)

    @property
    def filters(self) -> List[Filter]:
        return list(self._chain)

    @property
    def input_shape(self) -> Shape:
        return self._chain[0].input_shape

    @property
    def output_shape(self) -> Shape:
        return self._chain[-1].output_shape

    def __len__(self) -> int:
        return len(self._chain)

    def _forward(self, inputs: torch.Tensor, count: int) -> Optional[torch.Tensor]:
        expected = self.input_shape.size * count
        if inputs.numel() != expected:
            logger.error(
                "Network expects %d value(s) for %d sample(s), got %d",
                expected,
                count,
                inputs.numel(),
            )
            return None
        try:
            with torch.inference_mode():
                return self._chain(inputs.reshape(count, self.input_shape.size))
        except RuntimeError as error:
            logger.error("Forward pass failed: %s", error)
            return None

    def apply(self, inputs: Any) -> torch.Tensor:
        """
        Run one sample through the network.

        Args:
            inputs: `input_shape.size` floats (any tensor-like layout).

        Returns:
            The `output_shape.size` outputs, or an empty tensor on failure.
        """
        outputs = self._forward(_as_vector(inputs), 1)
        if outputs is None:
            return torch.empty(0)
        return outputs[0]

    def batch(self, inputs: Any, count: int) -> List[torch.Tensor]:
        """
        Run `count` contiguously packed samples through the network.

        Row `r` of the result matches `apply` on the `r`-th slice of
        `inputs` (up to floating-point reordering inside torch kernels).

        Returns:
            `count` output rows in input order, or an empty list on failure.
        """
        if count < 1:
            logger.error("Batch size must be positive, got %d", count)
            return []
        outputs = self._forward(_as_vector(inputs), count)
        if outputs is None:
            return []
        return list(outputs.unbind(0))

    def predict(self, inputs: Any) -> Optional[int]:
        """Most likely class of one sample, or `None` if the pass failed."""
        outputs = self.apply(inputs)
        if outputs.numel() == 0:
            return None
        return argmax(outputs.tolist())

    def predict_batch(self, inputs: Any, count: int) -> List[int]:
        """Most likely class of each of `count` packed samples, in input order."""
        return [argmax(row.tolist()) for row in self.batch(inputs, count)]

    def __repr__(self) -> str:
        return f"Network({self._chain!r})"
