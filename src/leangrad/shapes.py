"""
Shape tracking & broadcast resolution
"""

from __future__ import annotations

import dataclasses
import itertools
import math
import numbers
import operator
from typing import Iterator, Sequence, overload

import numpy as np

Index = int | slice | tuple[int | slice, ...]


@dataclasses.dataclass(slots=True, frozen=True)
class Shape(Sequence[int]):
    dims: tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "dims", tuple(map(operator.index, self.dims)))
        assert all(d >= 0 for d in self.dims), f"{self.dims=} must be non-negative ints"

    @overload
    def __getitem__(self, index: slice) -> tuple[int, ...]: ...
    @overload
    def __getitem__(self, index: int) -> int: ...
    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        return self.dims[index]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Shape) and self.dims == other.dims

    def __hash__(self) -> int:
        return hash(self.dims)

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"Shape({', '.join(map(str, self.dims))})"

    def __bool__(self) -> bool:
        return len(self.dims) > 0

    def __len__(self) -> int:
        return self.ndims

    def __iter__(self) -> Iterator[int]:
        return iter(self.dims)

    def broadcast_index(self, global_index: int) -> int:
        """Position in this operand's storage for a position in the (larger) output index space"""
        return global_index % self.size

    def broadcast(self, other: Shape) -> Shape:
        return broadcast(self, other)

    def is_tile_of(self, other: Shape) -> bool:
        """True if the flat storage of `self` repeats contiguously to fill `other`"""
        stripped = tuple(itertools.dropwhile(lambda d: d == 1, self.dims))
        return len(stripped) <= len(other) and other.dims[len(other) - len(stripped) :] == stripped

    def permute(self, axes: Sequence[int]) -> Shape:
        assert sorted(axes) == list(range(self.ndims)), f"{axes=} is not a permutation of {self}"
        return Shape(tuple(self.dims[i] for i in axes))

    def insertaxes(self, *axes: int) -> Shape:
        new_axes = list(self)
        for i in sorted(axes):
            new_axes.insert(i, 1)
        return Shape(tuple(new_axes))

    def dropaxes(self, *axes: int) -> Shape:
        pos_axes = set(self.normalize_axes(*axes))
        return Shape(tuple(d for i, d in enumerate(self) if i not in pos_axes))

    def flat(self) -> Shape:
        return Shape((self.size,))

    def reduction_layout(self, axis: int | None) -> tuple[int, int, int]:
        """(outer, length, inner) so that a reduction reads `outer * length * inner` with stride `inner`"""
        if axis is None:
            return 1, self.size, 1
        (axis,) = self.normalize_axes(axis)
        return math.prod(self.dims[:axis]), self.dims[axis], math.prod(self.dims[axis + 1 :])

    def reduce(self, axis: int | None, keepdims: bool = False) -> Shape:
        if axis is None:
            return Shape((1,) * self.ndims) if keepdims else Shape(())
        (axis,) = self.normalize_axes(axis)
        reduced = self.dropaxes(axis)
        return reduced.insertaxes(axis) if keepdims else reduced

    def select(self, index: Index) -> Shape:
        locs = self.normalize_index(index)
        kept = [len(range(loc.start, loc.stop, loc.step)) for loc in locs if isinstance(loc, slice)]
        return Shape((*kept, *self.dims[len(locs) :]))

    def normalize_index(self, index: Index) -> tuple[int | slice, ...]:
        locs = index if isinstance(index, tuple) else (index,)
        assert len(locs) <= self.ndims, f"too many indices {index=} for {self}"

        def normalize_loc(loc: int | slice, dim: int) -> int | slice:
            match loc:
                case bool():
                    raise TypeError(f"Boolean index {loc=} is not supported")
                case numbers.Integral():
                    idx = int(loc) + dim if loc < 0 else int(loc)
                    assert 0 <= idx < dim, f"{loc=} out of bounds for {dim=}"
                    return idx
                case slice():
                    assert loc.step is None or loc.step > 0, f"{loc=} must have a positive step"
                    return slice(*loc.indices(dim))
                case _:
                    raise TypeError(f"Unrecognized index type: {loc=}")

        return tuple(itertools.starmap(normalize_loc, zip(locs, self.dims)))

    def normalize_axes(self, *axes: int) -> tuple[int, ...]:
        ndims = self.ndims
        assert all(-ndims <= ax < ndims for ax in axes), f"{axes=} out of range for {self}"
        return tuple(ax % ndims if ax < 0 else ax for ax in axes)

    @property
    def ndims(self) -> int:
        return len(self.dims)

    @property
    def size(self) -> int:
        return math.prod(self.dims)


### Broadcast resolver ###
def broadcast(lhs: Shape, rhs: Shape) -> Shape:
    """
    Restricted broadcasting: the smaller operand must tile the larger one.
    Higher rank wins, then larger size, then the left operand.
    """
    if lhs == rhs:
        return lhs
    out, other = (lhs, rhs) if (lhs.ndims, lhs.size) >= (rhs.ndims, rhs.size) else (rhs, lhs)
    assert other.is_tile_of(out), f"Broadcast {lhs=} <> {rhs=} failed: {other} does not tile {out}"
    return out


def broadcast_indices(out: Shape, operand: Shape) -> np.ndarray:
    """Flat storage position of `operand` for every flat position of `out`"""
    return np.arange(out.size, dtype=np.int64) % max(operand.size, 1)


def matmul_shape(lhs: Shape, rhs: Shape) -> tuple[Shape, Shape]:
    """Returns the result shape and the broadcast batch shape of a (batched) matrix product"""
    assert lhs.ndims >= 2 and rhs.ndims >= 2, f"matmul requires matrices, got {lhs=} and {rhs=}"
    assert lhs[-1] == rhs[-2], f"matmul inner dimension mismatch {lhs=} <> {rhs=}"
    batch = broadcast(Shape(lhs[:-2]), Shape(rhs[:-2]))
    return Shape((*batch, lhs[-2], rhs[-1])), batch
