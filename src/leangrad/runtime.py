"""
Engines own the memory and run the kernels that fill a `Buffer`.
Tensors on the same engine (same type & dtype) share a device.
"""

from __future__ import annotations

import abc
import dataclasses
import logging
import math
import types
import weakref
from typing import Any, Callable, ClassVar, Generic, TypeVar

import numpy as np
import numpy.typing as npt

from leangrad import llops, shapes

RefType = TypeVar("RefType")
PyArrayRepresentation = int | float | bool | list["PyArrayRepresentation"]
logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True, eq=False)
class Buffer(Generic[RefType]):
    """
    Flat engine-resident storage of `shape.size` elements.
    owners: the live tensors reading this storage, a buffer with several owners is copied before writes
    """

    objref: RefType
    shape: shapes.Shape
    engine: Engine[RefType]
    owners: weakref.WeakSet = dataclasses.field(default_factory=weakref.WeakSet, repr=False)

    def __post_init__(self) -> None:
        assert len(self.objref) == self.shape.size, f"{len(self.objref)=} does not match {self.shape=}"  # type: ignore

    def to_python(self) -> PyArrayRepresentation:
        return self.engine.to_python(self)

    def view(self, shape: shapes.Shape) -> Buffer[RefType]:
        assert shape.size == self.shape.size, f"{self.shape=} <> {shape=} size mismatch"
        return Buffer(self.objref, shape, self.engine, self.owners)

    def claim(self, owner: object) -> None:
        self.owners.add(owner)

    def disown(self, owner: object) -> None:
        self.owners.discard(owner)

    @property
    def is_shared(self) -> bool:
        return len(self.owners) > 1

    @property
    def size(self) -> int:
        return self.shape.size


class Engine(abc.ABC, Generic[RefType]):
    """
    Device capability set.
    Public methods resolve shapes, check preconditions and allocate results,
    the `execute_*` kernels fill the result in place.
    """

    def __init__(self, dtype: npt.DTypeLike = np.float32) -> None:
        self.dtype = np.dtype(dtype)
        logger.debug("created %r", self)

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.dtype == other.dtype  # type: ignore

    def __hash__(self) -> int:
        return hash((type(self), self.dtype))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(dtype={self.dtype.name})"

    ### memory ###
    @abc.abstractmethod
    def empty(self, size: int) -> RefType: ...

    @abc.abstractmethod
    def from_numpy(self, array: np.ndarray) -> RefType: ...

    @abc.abstractmethod
    def to_numpy(self, objref: RefType) -> np.ndarray: ...

    def allocate(self, shape: shapes.Shape) -> Buffer[RefType]:
        return Buffer(self.empty(shape.size), shape, self)

    def load(self, data: Any) -> Buffer[RefType]:
        array = np.asarray(data, dtype=self.dtype)
        return Buffer(self.from_numpy(array.ravel()), shapes.Shape(array.shape), self)

    def to_python(self, buffer: Buffer[RefType]) -> PyArrayRepresentation:
        return self.to_numpy(buffer.objref).reshape(buffer.shape.dims).tolist()

    ### elementwise ###
    def binary(self, op: llops.BinaryOps, lhs: Buffer[RefType], rhs: Buffer[RefType]) -> Buffer[RefType]:
        self.assert_on_device(lhs, rhs)
        result = self.allocate(shapes.broadcast(lhs.shape, rhs.shape))
        self.execute_binary(op, lhs, rhs, result)
        return result

    def unary(self, op: llops.UnaryOps, src: Buffer[RefType]) -> Buffer[RefType]:
        self.assert_on_device(src)
        result = self.allocate(src.shape)
        self.execute_unary(op, src, result)
        return result

    ### reductions ###
    def reduce(
        self, op: llops.ReduceOps, src: Buffer[RefType], axis: int | None = None, keepdims: bool = False
    ) -> Buffer[RefType]:
        self.assert_on_device(src)
        result = self.allocate(src.shape.reduce(axis, keepdims))
        self.execute_reduce(op, src, src.shape.reduction_layout(axis), result)
        return result

    ### matrix multiply ###
    def matmul(self, lhs: Buffer[RefType], rhs: Buffer[RefType]) -> Buffer[RefType]:
        self.assert_on_device(lhs, rhs)
        out_shape, _ = shapes.matmul_shape(lhs.shape, rhs.shape)
        result = self.allocate(out_shape)
        self.execute_matmul(lhs, rhs, result)
        return result

    ### utility ###
    def full(self, shape: shapes.Shape, value: float) -> Buffer[RefType]:
        result = self.allocate(shape)
        self.fill(result, value)
        return result

    def arange(self, lower: float, upper: float, stride: float = 1) -> Buffer[RefType]:
        assert stride != 0, f"{stride=} must be non-zero"
        result = self.allocate(shapes.Shape((max(int((upper - lower) / stride), 0),)))
        self.execute_arange(lower, stride, result)
        return result

    def reverse(self, src: Buffer[RefType]) -> Buffer[RefType]:
        self.assert_on_device(src)
        assert src.shape.ndims >= 1, f"reverse requires at least one axis, got {src.shape=}"
        result = self.allocate(src.shape)
        self.execute_reverse(src, result)
        return result

    def extract_diagonal(self, src: Buffer[RefType]) -> Buffer[RefType]:
        self.assert_on_device(src)
        assert src.shape.ndims == 2, f"source must be a matrix, got {src.shape=}"
        result = self.allocate(shapes.Shape((min(src.shape.dims),)))
        self.execute_extract_diagonal(src, result)
        return result

    def insert_diagonal(self, src: Buffer[RefType], shape: shapes.Shape | None = None) -> Buffer[RefType]:
        self.assert_on_device(src)
        assert src.shape.ndims == 1, f"diagonal elements must be a vector, got {src.shape=}"
        shape = shapes.Shape((src.size, src.size)) if shape is None else shape
        assert shape.ndims == 2 and min(shape.dims) == src.size, f"{src.shape=} does not fit the diagonal of {shape=}"
        result = self.full(shape, 0)
        self.execute_insert_diagonal(src, result)
        return result

    def fill_diagonal(self, value: float, size: int) -> Buffer[RefType]:
        result = self.full(shapes.Shape((size, size)), 0)
        self.execute_fill_diagonal(value, result)
        return result

    def band(self, src: Buffer[RefType], below: int | None, above: int | None) -> Buffer[RefType]:
        self.assert_on_device(src)
        assert src.shape.ndims >= 2, f"band requires a (batch of) matrices, got {src.shape=}"
        result = self.allocate(src.shape)
        self.execute_band(src, result, below, above)
        return result

    @abc.abstractmethod
    def fill(self, result: Buffer[RefType], value: float) -> None: ...

    ### data movement ###
    @abc.abstractmethod
    def permute(self, src: Buffer[RefType], order: tuple[int, ...]) -> Buffer[RefType]: ...

    @abc.abstractmethod
    def select(self, src: Buffer[RefType], index: shapes.Index) -> Buffer[RefType]: ...

    @abc.abstractmethod
    def assign(self, target: Buffer[RefType], index: shapes.Index, src: Buffer[RefType]) -> None:
        """Write `src` into a sub-range of `target` in place"""

    @abc.abstractmethod
    def copy(self, src: Buffer[RefType]) -> Buffer[RefType]: ...

    ### kernels ###
    @abc.abstractmethod
    def execute_binary(self, op: llops.BinaryOps, lhs: Buffer, rhs: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_unary(self, op: llops.UnaryOps, src: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_reduce(self, op: llops.ReduceOps, src: Buffer, layout: tuple[int, int, int], result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_matmul(self, lhs: Buffer, rhs: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_arange(self, lower: float, stride: float, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_reverse(self, src: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_extract_diagonal(self, src: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_insert_diagonal(self, src: Buffer, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_fill_diagonal(self, value: float, result: Buffer) -> None: ...
    @abc.abstractmethod
    def execute_band(self, src: Buffer, result: Buffer, below: int | None, above: int | None) -> None: ...

    def assert_on_device(self, *buffers: Buffer) -> None:
        assert all(buf.engine == self for buf in buffers), f"device mismatch: {[buf.engine for buf in buffers]} <> {self}"


class ArrayEngine(Engine[RefType], abc.ABC):
    """Data movement shared by engines whose arrays follow the numpy interface"""

    xp: ClassVar[types.ModuleType]

    def empty(self, size: int) -> RefType:
        return self.xp.empty(size, dtype=self.dtype)

    def fill(self, result: Buffer[RefType], value: float) -> None:
        result.objref.fill(value)  # type: ignore

    def permute(self, src: Buffer[RefType], order: tuple[int, ...]) -> Buffer[RefType]:
        self.assert_on_device(src)
        result = self.allocate(src.shape.permute(order))
        result.objref[...] = self.xp.transpose(self._nd(src), order).ravel()  # type: ignore
        return result

    def select(self, src: Buffer[RefType], index: shapes.Index) -> Buffer[RefType]:
        self.assert_on_device(src)
        locs = src.shape.normalize_index(index)
        result = self.allocate(src.shape.select(locs))
        result.objref[...] = self.xp.ravel(self._nd(src)[locs])  # type: ignore
        return result

    def assign(self, target: Buffer[RefType], index: shapes.Index, src: Buffer[RefType]) -> None:
        self.assert_on_device(target, src)
        locs = target.shape.normalize_index(index)
        region = target.shape.select(locs)
        assert src.shape == region or src.shape.is_tile_of(region), f"{src.shape=} can not fill {region=}"
        values = src.objref[self.xp.asarray(shapes.broadcast_indices(region, src.shape))]  # type: ignore
        self._nd(target)[locs] = values.reshape(region.dims)

    def copy(self, src: Buffer[RefType]) -> Buffer[RefType]:
        return Buffer(src.objref.copy(), src.shape, self)  # type: ignore

    def _nd(self, buffer: Buffer[RefType]) -> Any:
        return buffer.objref.reshape(buffer.shape.dims)  # type: ignore


### Numpy as the sequential (CPU) engine ###
class NumPyEngine(ArrayEngine[np.ndarray]):
    """
    Every kernel evaluates, for each output position, the same index mapping
    as the one-thread-per-element GPU kernels.
    """

    xp = np
    __OPS_MAP__: ClassVar[dict[llops.LLOps, Callable[..., np.ndarray]]] = {
        ### unary ###
        llops.UnaryOps.EXP: np.exp,
        llops.UnaryOps.LOG: np.log,
        llops.UnaryOps.SQRT: np.sqrt,
        llops.UnaryOps.SIN: np.sin,
        llops.UnaryOps.COS: np.cos,
        llops.UnaryOps.TAN: np.tan,
        llops.UnaryOps.SINH: np.sinh,
        llops.UnaryOps.COSH: np.cosh,
        llops.UnaryOps.TANH: np.tanh,
        llops.UnaryOps.SQUARE: np.square,
        llops.UnaryOps.RELU: lambda x: np.where(x > 0, x, 0),
        llops.UnaryOps.HEAVISIDE: lambda x: np.where(x > 0, 1, 0),
        ### binary ###
        llops.BinaryOps.ADD: np.add,
        llops.BinaryOps.SUB: np.subtract,
        llops.BinaryOps.MUL: np.multiply,
        llops.BinaryOps.DIV: np.divide,
        ### reduce ###
        llops.ReduceOps.SUM: lambda x: np.sum(x, axis=1),
        llops.ReduceOps.MEAN: lambda x: np.mean(x, axis=1),
        llops.ReduceOps.VAR: lambda x: np.var(x, axis=1),
    }

    def from_numpy(self, array: np.ndarray) -> np.ndarray:
        return np.array(array, dtype=self.dtype).ravel()

    def to_numpy(self, objref: np.ndarray) -> np.ndarray:
        return objref

    def execute_binary(self, op: llops.BinaryOps, lhs: Buffer, rhs: Buffer, result: Buffer) -> None:
        lhs_vals = lhs.objref[shapes.broadcast_indices(result.shape, lhs.shape)]
        rhs_vals = rhs.objref[shapes.broadcast_indices(result.shape, rhs.shape)]
        with np.errstate(all="ignore"):
            result.objref[...] = self.__OPS_MAP__[op](lhs_vals, rhs_vals)

    def execute_unary(self, op: llops.UnaryOps, src: Buffer, result: Buffer) -> None:
        with np.errstate(all="ignore"):
            result.objref[...] = self.__OPS_MAP__[op](src.objref)

    def execute_reduce(self, op: llops.ReduceOps, src: Buffer, layout: tuple[int, int, int], result: Buffer) -> None:
        outer, length, inner = layout
        with np.errstate(all="ignore"):
            reduced = self.__OPS_MAP__[op](src.objref.reshape(outer, length, inner))
        result.objref[...] = reduced.ravel()

    def execute_matmul(self, lhs: Buffer, rhs: Buffer, result: Buffer) -> None:
        (rows, inner), cols = lhs.shape[-2:], rhs.shape[-1]
        batch = shapes.Shape(result.shape[:-2])
        lhs_batch, rhs_batch = shapes.Shape(lhs.shape[:-2]), shapes.Shape(rhs.shape[:-2])
        lhs_mats = lhs.objref.reshape(lhs_batch.size, rows, inner)[shapes.broadcast_indices(batch, lhs_batch)]
        rhs_mats = rhs.objref.reshape(rhs_batch.size, inner, cols)[shapes.broadcast_indices(batch, rhs_batch)]
        result.objref[...] = np.matmul(lhs_mats, rhs_mats).ravel()

    def execute_arange(self, lower: float, stride: float, result: Buffer) -> None:
        result.objref[...] = lower + stride * np.arange(result.size)

    def execute_reverse(self, src: Buffer, result: Buffer) -> None:
        _, length, inner = src.shape.reduction_layout(0)
        result.objref[...] = src.objref.reshape(length, inner)[::-1].ravel()

    def execute_extract_diagonal(self, src: Buffer, result: Buffer) -> None:
        result.objref[...] = np.diagonal(self._nd(src))

    def execute_insert_diagonal(self, src: Buffer, result: Buffer) -> None:
        idx = np.arange(src.size)
        self._nd(result)[idx, idx] = src.objref

    def execute_fill_diagonal(self, value: float, result: Buffer) -> None:
        np.fill_diagonal(self._nd(result), value)

    def execute_band(self, src: Buffer, result: Buffer, below: int | None, above: int | None) -> None:
        rows, cols = src.shape[-2:]
        offsets = np.arange(cols)[None, :] - np.arange(rows)[:, None]
        mask = (offsets >= -(rows if below is None else below)) & (offsets <= (cols if above is None else above))
        matrices = src.objref.reshape(math.prod(src.shape[:-2]), rows, cols)
        result.objref[...] = np.where(mask, matrices, 0).ravel()
