"""
Tensors with torch-like interface
"""

from __future__ import annotations

from typing import Callable, Self, Sequence

import numpy as np

from leangrad import autograd, config, runtime, shapes


def _reflected(func: Callable[..., autograd.AutoDiffable]) -> Callable[..., autograd.AutoDiffable]:
    return lambda self, other: func(other, self)


class Tensor(autograd.AutoDiffable):
    # shaping
    reshape = autograd.reshape
    flatten = autograd.flatten
    permute = autograd.permute
    transpose = autograd.transpose
    # movement
    __getitem__ = autograd.select
    __setitem__ = autograd.assign
    reversed = autograd.reverse
    band = autograd.band
    diagonal_elements = autograd.diagonal_elements
    diagonal_matrix = autograd.diagonal_matrix
    padded = autograd.padded
    repeated = autograd.repeated
    one_hot = autograd.one_hot
    # arithmetic
    __neg__ = autograd.neg
    __add__ = __radd__ = autograd.add
    __sub__ = autograd.sub
    __rsub__ = _reflected(autograd.sub)
    __mul__ = __rmul__ = autograd.mul
    __truediv__ = autograd.div
    __rtruediv__ = _reflected(autograd.div)
    __matmul__ = autograd.matmul
    __rmatmul__ = _reflected(autograd.matmul)
    sum = autograd.sum
    mean = autograd.mean
    var = autograd.var
    # elementwise
    exp = autograd.exp
    log = autograd.log
    sqrt = autograd.sqrt
    sin = autograd.sin
    cos = autograd.cos
    tan = autograd.tan
    sinh = autograd.sinh
    cosh = autograd.cosh
    tanh = autograd.tanh
    square = autograd.square
    # activations
    relu = autograd.relu
    heaviside = autograd.heaviside

    # constructors
    @classmethod
    def full(
        cls, shape: Sequence[int], value: float, requires_grad: bool = False, device: runtime.Engine | None = None
    ) -> Self:
        engine = config.Configuration.engine if device is None else device
        return cls.from_buffer(engine.full(shapes.Shape(tuple(shape)), value), requires_grad=requires_grad)

    @classmethod
    def zeros(cls, *shape: int, requires_grad: bool = False, device: runtime.Engine | None = None) -> Self:
        return cls.full(shape, 0, requires_grad=requires_grad, device=device)

    @classmethod
    def ones(cls, *shape: int, requires_grad: bool = False, device: runtime.Engine | None = None) -> Self:
        return cls.full(shape, 1, requires_grad=requires_grad, device=device)

    @classmethod
    def arange(
        cls,
        lower: float,
        upper: float,
        stride: float = 1,
        requires_grad: bool = False,
        device: runtime.Engine | None = None,
    ) -> Self:
        """`lower, lower + stride, ...` up to (excluding) `upper`"""
        engine = config.Configuration.engine if device is None else device
        return cls.from_buffer(engine.arange(lower, upper, stride), requires_grad=requires_grad)

    @classmethod
    def eye(cls, size: int, requires_grad: bool = False, device: runtime.Engine | None = None) -> Self:
        engine = config.Configuration.engine if device is None else device
        return cls.from_buffer(engine.fill_diagonal(1, size), requires_grad=requires_grad)

    @classmethod
    def random_uniform(
        cls,
        *shape: int,
        lb: float = 0,
        ub: float = 1,
        requires_grad: bool = False,
        device: runtime.Engine | None = None,
    ) -> Self:
        return cls(np.random.uniform(lb, ub, shape), requires_grad=requires_grad, device=device)

    @classmethod
    def random_normal(
        cls,
        *shape: int,
        mean: float = 0,
        std: float = 1,
        requires_grad: bool = False,
        device: runtime.Engine | None = None,
    ) -> Self:
        return cls(np.random.normal(mean, std, shape), requires_grad=requires_grad, device=device)
