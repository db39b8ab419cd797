"""BlurHash encoding of pixel grids and validation of stored hash strings."""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

import blurhash
import numpy as np

from media_blurhash.errors import EncodeError

BLURHASH_ALPHABET: Final[str] = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz#$%*+,-.:;=?@[]^_{|}~"
DEFAULT_COMPONENTS_X: Final[int] = 4
DEFAULT_COMPONENTS_Y: Final[int] = 3

_ALPHABET_INDEX: Final[dict[str, int]] = {char: idx for idx, char in enumerate(BLURHASH_ALPHABET)}

# (grid, components_x, components_y) -> hash
HashEncoder = Callable[[np.ndarray, int, int], str]


def expected_length(components_x: int, components_y: int) -> int:
    """Length of a hash: size flag, max AC, DC (4 chars) plus 2 chars per AC component."""

    return 4 + 2 * components_x * components_y


def encode_pixels(
    grid: np.ndarray,
    components_x: int = DEFAULT_COMPONENTS_X,
    components_y: int = DEFAULT_COMPONENTS_Y,
) -> str:
    """Encode an RGB pixel grid into a BlurHash string.

    Raises:
        EncodeError: The grid has the wrong shape or the library rejected the input.
    """

    if grid.ndim != 3 or grid.shape[2] != 3 or grid.shape[0] == 0 or grid.shape[1] == 0:
        raise EncodeError(f"expected an (H, W, 3) pixel grid, got shape {grid.shape}")

    try:
        value = blurhash.encode(grid.tolist(), components_x, components_y)
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise EncodeError(f"blurhash encoding failed: {exc}") from exc

    if not is_valid_blurhash(value, components_x, components_y):
        raise EncodeError(f"encoder returned a malformed hash: {value!r}")
    return value


def is_valid_blurhash(
    value: object,
    components_x: int = DEFAULT_COMPONENTS_X,
    components_y: int = DEFAULT_COMPONENTS_Y,
) -> bool:
    """Return True when ``value`` is a hash for the given component counts."""

    if not isinstance(value, str) or len(value) != expected_length(components_x, components_y):
        return False
    if any(char not in _ALPHABET_INDEX for char in value):
        return False

    size_flag = _ALPHABET_INDEX[value[0]]
    return size_flag == (components_x - 1) + (components_y - 1) * 9


__all__ = [
    "BLURHASH_ALPHABET",
    "DEFAULT_COMPONENTS_X",
    "DEFAULT_COMPONENTS_Y",
    "HashEncoder",
    "encode_pixels",
    "expected_length",
    "is_valid_blurhash",
]
