"""
Exception types raised by the digitnet core.

Parsing and building errors surface immediately to the caller. Numeric
failures during a forward pass never raise: the network turns them into an
empty result instead (see `digitnet.network`).
"""

from __future__ import annotations


class DigitNetError(Exception):
    """Base class for every error raised by digitnet."""


class InvalidFormatError(DigitNetError, ValueError):
    """A binary buffer does not follow the expected layout (magic, length)."""


class OutOfRangeError(DigitNetError, IndexError):
    """A read would run past the end of a byte buffer."""


class SampleIndexError(OutOfRangeError):
    """A sample or label index is outside `[0, count)`."""


class BuildError(DigitNetError, ValueError):
    """A layer descriptor could not be resolved into an executable filter."""
