from typing import Any

import cupy
import numpy as np

from cupy_engine import kernels
from leangrad import llops, runtime, shapes


class CuPyEngine(runtime.ArrayEngine[cupy.ndarray]):
    """
    CUDA engine: data movement through cupy arrays, compute through the raw kernels in `kernels`
    """

    xp = cupy

    def from_numpy(self, array: np.ndarray) -> cupy.ndarray:
        return cupy.asarray(array, dtype=self.dtype).ravel()

    def to_numpy(self, objref: cupy.ndarray) -> np.ndarray:
        return cupy.asnumpy(objref)

    def execute_binary(
        self, op: llops.BinaryOps, lhs: runtime.Buffer, rhs: runtime.Buffer, result: runtime.Buffer
    ) -> None:
        args = (*self._operand(lhs), *self._operand(rhs), result.objref, self._int(result.size))
        self._launch(kernels.kernel_name(op), result.size, *args)

    def execute_unary(self, op: llops.UnaryOps, src: runtime.Buffer, result: runtime.Buffer) -> None:
        self._launch(kernels.kernel_name(op), result.size, src.objref, result.objref, self._int(result.size))

    def execute_reduce(
        self, op: llops.ReduceOps, src: runtime.Buffer, layout: tuple[int, int, int], result: runtime.Buffer
    ) -> None:
        self._launch(kernels.kernel_name(op), result.size, src.objref, result.objref, *map(self._int, layout))

    def execute_matmul(self, lhs: runtime.Buffer, rhs: runtime.Buffer, result: runtime.Buffer) -> None:
        rows, cols = result.shape[-2:]
        batch = shapes.Shape(result.shape[:-2])
        args = (*self._operand(lhs), *self._operand(rhs), *self._operand(result))
        kernels.launch_matrix("matmul", self.dtype, cols, rows, batch.size, *args)

    def execute_arange(self, lower: float, stride: float, result: runtime.Buffer) -> None:
        args = (self._scalar(lower), self._scalar(stride), result.objref, self._int(result.size))
        self._launch("arange", result.size, *args)

    def execute_reverse(self, src: runtime.Buffer, result: runtime.Buffer) -> None:
        _, length, inner = src.shape.reduction_layout(0)
        self._launch("reverse", result.size, src.objref, result.objref, self._int(length), self._int(inner))

    def execute_extract_diagonal(self, src: runtime.Buffer, result: runtime.Buffer) -> None:
        args = (src.objref, result.objref, self._int(src.shape[1]), self._int(result.size))
        self._launch("extract_diagonal", result.size, *args)

    def execute_insert_diagonal(self, src: runtime.Buffer, result: runtime.Buffer) -> None:
        args = (src.objref, result.objref, self._int(result.shape[1]), self._int(src.size))
        self._launch("insert_diagonal", src.size, *args)

    def execute_fill_diagonal(self, value: float, result: runtime.Buffer) -> None:
        size = min(result.shape.dims)
        args = (self._scalar(value), result.objref, self._int(result.shape[1]), self._int(size))
        self._launch("fill_diagonal", size, *args)

    def execute_band(self, src: runtime.Buffer, result: runtime.Buffer, below: int | None, above: int | None) -> None:
        rows, cols = src.shape[-2:]
        below, above = rows if below is None else below, cols if above is None else above
        dims = map(self._int, (rows, cols, below, above, result.size))
        self._launch("band", result.size, src.objref, result.objref, *dims)

    ### helpers ###
    def _launch(self, name: str, count: int, *args: Any) -> None:
        kernels.launch(name, self.dtype, count, *args)

    def _operand(self, buffer: runtime.Buffer) -> tuple[cupy.ndarray, np.int64, cupy.ndarray]:
        return buffer.objref, self._int(buffer.shape.ndims), kernels.device_dims(buffer.shape.dims)

    def _scalar(self, value: float) -> np.generic:
        return self.dtype.type(value)

    @staticmethod
    def _int(value: int) -> np.int64:
        return np.int64(value)
