"""Named blocks of a flat variable (or constraint) vector.

Each block records an offset and a shape once; evaluation, Hessian assembly,
diagnostics and export all address the flat vector through these descriptors.
Blocks are laid out contiguously in row-major order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from math import prod

import numpy as np

from .exceptions import DimensionError
from .types import ErrorCode


@dataclass(frozen=True)
class VariableBlock:
    name: str
    offset: int
    shape: tuple[int, ...]

    @property
    def size(self) -> int:
        return prod(self.shape)

    @property
    def stop(self) -> int:
        return self.offset + self.size

    @property
    def slice(self) -> slice:
        return slice(self.offset, self.stop)

    def indices(self) -> np.ndarray:
        """Flat indices of the block, arranged in the block's shape."""
        return np.arange(self.offset, self.stop).reshape(self.shape)

    def index(self, *pos: int) -> int:
        """Flat index of one element of the block."""
        if len(pos) != len(self.shape):
            raise DimensionError(
                f"Block '{self.name}' has {len(self.shape)} dimensions, got index {pos}",
                ErrorCode.BAD_INDEX,
            )
        for i, n in zip(pos, self.shape):
            if not 0 <= i < n:
                raise DimensionError(
                    f"Index {pos} out of range for block '{self.name}' of shape {self.shape}",
                    ErrorCode.BAD_INDEX,
                )
        return self.offset + int(np.ravel_multi_index(pos, self.shape))

    def view(self, vector):
        """The block's entries of a flat vector, reshaped to the block shape."""
        return vector[self.offset : self.stop].reshape(self.shape)


@dataclass
class IndexMap:
    blocks: dict[str, VariableBlock] = field(default_factory=dict)
    total: int = 0

    def add(self, name: str, shape: int | tuple[int, ...]) -> VariableBlock:
        if name in self.blocks:
            raise DimensionError(f"Block '{name}' is already defined", ErrorCode.INDEX_MAP_MISMATCH)
        shape = (shape,) if isinstance(shape, int) else tuple(shape)
        if any(n < 0 for n in shape):
            raise DimensionError(f"Block '{name}' has a negative extent {shape}")

        block = VariableBlock(name, self.total, shape)
        self.blocks[name] = block
        self.total = block.stop
        return block

    def block(self, name: str) -> VariableBlock:
        try:
            return self.blocks[name]
        except KeyError:
            raise DimensionError(f"No block named '{name}'", ErrorCode.BAD_INDEX) from None

    def __getitem__(self, name: str) -> VariableBlock:
        return self.block(name)

    def __contains__(self, name: str) -> bool:
        return name in self.blocks

    def check_size(self, n: int, what: str = "vector") -> None:
        """Fail fast if a vector does not have exactly the mapped length."""
        if n != self.total:
            raise DimensionError(
                f"Size of {what} ({n}) does not match index map total ({self.total})",
                ErrorCode.INDEX_MAP_MISMATCH,
            )

    def check_indices(self, idx, what: str = "indices") -> None:
        """Fail fast if any flat index falls outside the mapped range."""
        idx = np.asarray(idx)
        if idx.size and (idx.min() < 0 or idx.max() >= self.total):
            raise DimensionError(
                f"{what} out of range [0, {self.total}): min {idx.min()}, max {idx.max()}",
                ErrorCode.BAD_INDEX,
            )
