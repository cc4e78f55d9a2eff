"""
Autodifferentiation logic

Ops are defined at buffer level as `forward, *backward_rules` and lifted to
autodiffable functions by `differentiable`. Results only carry a graph context
when gradients are enabled and one of the sources requires gradients.
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import logging
import math
import numbers
import typing
from typing import Any, Callable, Concatenate, Iterable, ParamSpec, Self, Sequence, TypeVar, Union

import numpy as np

from leangrad import config, graph, llops, runtime, shapes

# fmt: off
P, T = ParamSpec("P"), TypeVar("T", bound="AutoDiffable")
PyArrayRepr = int | float | bool | Sequence["PyArrayRepr"]
AutoDiffInput = Union[T, PyArrayRepr, np.ndarray]
GradDef = Callable[P, tuple[Any, ...]]
UnaryAutoDiffFunc = Callable[Concatenate[AutoDiffInput[T], P], T]
# fmt: on
logger = logging.getLogger(__name__)


### Base for autodiff ###
class AutoDiffable:
    def __init__(
        self,
        data: PyArrayRepr | np.ndarray | runtime.Buffer,
        requires_grad: bool = False,
        device: runtime.Engine | None = None,
    ) -> None:
        if isinstance(data, runtime.Buffer):
            assert device is None or device == data.engine, f"{data.engine=} <> {device=}"
            buffer = data
        else:
            buffer = (config.Configuration.engine if device is None else device).load(data)
        self._attach(buffer)
        self.requires_grad = requires_grad
        self.context: graph.GraphContext | None = None

    def __repr__(self) -> str:
        return (
            f"<{self.__module__}.{self.__class__.__name__}(\n"
            f"  {self.realize()!r},\n"
            f"  shape={self.shape.dims!r},\n"
            f"  device={self.device!r},\n"
            f"  {self.requires_grad=!r},\n"
            f"  {self.context=!r},\n"
            f")>"
        )

    def realize(self) -> PyArrayRepr:
        return self.buffer.to_python()

    def numpy(self) -> np.ndarray:
        return np.array(self.device.to_numpy(self.buffer.objref)).reshape(self.shape.dims)

    def item(self) -> float:
        assert self.shape.size == 1, f"item requires a single element, got {self.shape=}"
        return float(self.numpy().ravel()[0])

    def detached(self) -> Self:
        return self.from_buffer(self.buffer.view(self.shape))

    def to(self, device: runtime.Engine) -> Self:
        return type(self)(self.numpy(), requires_grad=self.requires_grad, device=device)

    def gradients(self, of: Sequence[T], retain_graph: bool = False) -> list[T]:
        return gradients(of, [self], retain_graph=retain_graph)

    @property
    def shape(self) -> shapes.Shape:
        return self.buffer.shape

    @property
    def device(self) -> runtime.Engine:
        return self.buffer.engine

    @classmethod
    def from_buffer(
        cls, buffer: runtime.Buffer, context: graph.GraphContext | None = None, requires_grad: bool = False
    ) -> Self:
        self = cls.__new__(cls)
        self._attach(buffer)
        self.context = context
        self.requires_grad = requires_grad or context is not None
        return self

    def _alias(self) -> Self:
        """Snapshot sharing buffer & context, later in-place writes to `self` do not reach it"""
        return self.from_buffer(self.buffer, self.context, self.requires_grad)

    def _attach(self, buffer: runtime.Buffer) -> None:
        if (previous := getattr(self, "buffer", None)) is not None:
            previous.disown(self)
        self.buffer = buffer
        buffer.claim(self)


### op definition ⟹ autodiffable function ###
def differentiable(tag: str) -> Callable[[GradDef[P]], Callable[..., Any]]:
    """
    Turn the buffer-level def of forward & backward rules into an autodiffable function for tensors
    """

    def decorator(grad_def: GradDef[P]) -> Callable[..., Any]:
        sign = inspect.signature(grad_def)
        types = typing.get_type_hints(grad_def)
        autodiffable_args = tuple(k for k in sign.parameters if types.get(k) is AutoDiffable)

        @functools.wraps(grad_def)
        def autodiffable_function(*args: P.args, **kwargs: P.kwargs) -> AutoDiffable:
            (bound_args := sign.bind(*args, **kwargs)).apply_defaults()
            sources = ensure_autodiffables(*(bound_args.arguments[k] for k in autodiffable_args))
            assert all(s.device == sources[0].device for s in sources), f"device mismatch in {tag}: {sources}"
            if tracked := config.Configuration.grad_enabled and any(s.requires_grad for s in sources):
                sources = tuple(s._alias() for s in sources)
            bound_args.arguments.update(zip(autodiffable_args, sources, strict=True))
            forward, *rules = grad_def(*bound_args.args, **bound_args.kwargs)
            context = create_context(tag, sources, rules) if tracked else None
            result = type(sources[0]).from_buffer(forward, context)
            config.Configuration.on_tensor_creation(tag, sources, result)
            return result

        return autodiffable_function

    return decorator


def create_context(tag: str, sources: Sequence[AutoDiffable], rules: Sequence[graph.BackwardRule]) -> graph.GraphContext:
    tracked = [(src, rule) for src, rule in zip(sources, rules, strict=True) if src.requires_grad]
    return graph.GraphContext(tag, tuple(src for src, _ in tracked), tuple(rule for _, rule in tracked))


### Backward rules ###
@dataclasses.dataclass(frozen=True, slots=True)
class ReduceTo(graph.BackwardRule):
    shape: shapes.Shape
    negate: bool = False

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(neg(output_grad) if self.negate else output_grad, self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class Scale(graph.BackwardRule):
    factor: AutoDiffable
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(mul(output_grad, self.factor), self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class DivideBy(graph.BackwardRule):
    divisor: AutoDiffable
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(div(output_grad, self.divisor), self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class QuotientDivisor(graph.BackwardRule):
    dividend: AutoDiffable
    divisor: AutoDiffable
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(neg(div(mul(output_grad, self.dividend), square(self.divisor))), self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class MatmulLhs(graph.BackwardRule):
    rhs: AutoDiffable
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(matmul(output_grad, transpose(self.rhs, -1, -2)), self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class MatmulRhs(graph.BackwardRule):
    lhs: AutoDiffable
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(matmul(transpose(self.lhs, -1, -2), output_grad), self.shape)


@dataclasses.dataclass(frozen=True, slots=True)
class Derivative(graph.BackwardRule):
    """Chain rule of an elementwise op, the derivative is looked up by `op`"""

    op: llops.UnaryOps
    source: AutoDiffable

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return mul(output_grad, DERIVATIVES[self.op](self.source))


@dataclasses.dataclass(frozen=True, slots=True)
class ExpandReduced(graph.BackwardRule):
    shape: shapes.Shape
    axis: int | None
    keepdims: bool
    scale: float = 1.0

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        expanded = expand_along(output_grad, self.shape, self.axis, self.keepdims)
        return expanded if self.scale == 1.0 else mul(expanded, self.scale)


@dataclasses.dataclass(frozen=True, slots=True)
class VarianceGrad(graph.BackwardRule):
    source: AutoDiffable
    axis: int | None
    keepdims: bool

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        _, length, _ = self.source.shape.reduction_layout(self.axis)
        centered = sub(self.source, expand_along(mean(self.source, self.axis), self.source.shape, self.axis))
        expanded = expand_along(output_grad, self.source.shape, self.axis, self.keepdims)
        return mul(expanded, mul(centered, 2 / max(length, 1)))


@dataclasses.dataclass(frozen=True, slots=True)
class Reshape(graph.BackwardRule):
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reshape(output_grad, self.shape.dims)


@dataclasses.dataclass(frozen=True, slots=True)
class Permute(graph.BackwardRule):
    order: tuple[int, ...]

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return permute(output_grad, *sorted(range(len(self.order)), key=self.order.__getitem__))


@dataclasses.dataclass(frozen=True, slots=True)
class Reverse(graph.BackwardRule):
    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reverse(output_grad)


@dataclasses.dataclass(frozen=True, slots=True)
class Band(graph.BackwardRule):
    below: int | None
    above: int | None

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return band(output_grad, self.below, self.above)


@dataclasses.dataclass(frozen=True, slots=True)
class DiagonalMatrix(graph.BackwardRule):
    shape: shapes.Shape

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return diagonal_matrix(output_grad, self.shape.dims)


@dataclasses.dataclass(frozen=True, slots=True)
class DiagonalElements(graph.BackwardRule):
    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return diagonal_elements(output_grad)


@dataclasses.dataclass(frozen=True, slots=True)
class Scatter(graph.BackwardRule):
    shape: shapes.Shape
    index: shapes.Index

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return assign(full_like(output_grad, self.shape, 0), self.index, output_grad)


@dataclasses.dataclass(frozen=True, slots=True)
class MaskOut(graph.BackwardRule):
    shape: shapes.Shape
    index: shapes.Index

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return mul(output_grad, assign(full_like(output_grad, self.shape, 1), self.index, 0))


@dataclasses.dataclass(frozen=True, slots=True)
class Gather(graph.BackwardRule):
    shape: shapes.Shape
    index: shapes.Index

    def __call__(self, output_grad: AutoDiffable) -> AutoDiffable:
        return reduce_to(select(output_grad, self.index), self.shape)


### Unary gradient defs ###
def _unary(op: llops.UnaryOps) -> UnaryAutoDiffFunc:
    def forward(ad: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule]:
        return ad.device.unary(op, ad.buffer), Derivative(op, ad)

    forward.__name__ = forward.__qualname__ = op.name.lower()
    return differentiable(op.name.lower())(forward)


exp = _unary(llops.UnaryOps.EXP)
log = _unary(llops.UnaryOps.LOG)
sqrt = _unary(llops.UnaryOps.SQRT)
sin = _unary(llops.UnaryOps.SIN)
cos = _unary(llops.UnaryOps.COS)
tan = _unary(llops.UnaryOps.TAN)
sinh = _unary(llops.UnaryOps.SINH)
cosh = _unary(llops.UnaryOps.COSH)
tanh = _unary(llops.UnaryOps.TANH)
square = _unary(llops.UnaryOps.SQUARE)
relu = _unary(llops.UnaryOps.RELU)
heaviside = _unary(llops.UnaryOps.HEAVISIDE)

DERIVATIVES: dict[llops.UnaryOps, Callable[[AutoDiffable], AutoDiffable]] = {
    llops.UnaryOps.EXP: exp,
    llops.UnaryOps.LOG: lambda x: div(1, x),
    llops.UnaryOps.SQRT: lambda x: div(0.5, sqrt(x)),
    llops.UnaryOps.SIN: cos,
    llops.UnaryOps.COS: lambda x: neg(sin(x)),
    llops.UnaryOps.TAN: lambda x: add(1, square(tan(x))),
    llops.UnaryOps.SINH: cosh,
    llops.UnaryOps.COSH: sinh,
    llops.UnaryOps.TANH: lambda x: sub(1, square(tanh(x))),
    llops.UnaryOps.SQUARE: lambda x: mul(x, 2),
    llops.UnaryOps.RELU: heaviside,
    llops.UnaryOps.HEAVISIDE: lambda x: full_like(x, x.shape, 0),
}


@differentiable("reshape")
def reshape(ad: AutoDiffable, /, shape: Sequence[int]) -> tuple[runtime.Buffer, graph.BackwardRule]:
    dims = tuple(shape)
    if -1 in dims:
        assert dims.count(-1) == 1, f"only one axis of {dims=} can be inferred"
        known = -math.prod(dims)
        assert known > 0 and ad.shape.size % known == 0, f"can not reshape {ad.shape} into {dims=}"
        dims = tuple(ad.shape.size // known if d == -1 else d for d in dims)
    return ad.buffer.view(shapes.Shape(dims)), Reshape(ad.shape)


def flatten(ad: AutoDiffInput[T], /) -> T:
    (ad,) = ensure_autodiffables(ad)
    return reshape(ad, ad.shape.flat().dims)


@differentiable("permute")
def permute(ad: AutoDiffable, /, *order: int) -> tuple[runtime.Buffer, graph.BackwardRule]:
    """
    Transpose tensor. for order=(), order:=shape[::-1]
    a la [numpy](https://numpy.org/doc/stable/reference/generated/numpy.transpose.html)
    """
    order = ad.shape.normalize_axes(*order) if order else tuple(range(ad.shape.ndims))[::-1]
    return ad.device.permute(ad.buffer, order), Permute(order)


def transpose(ad: AutoDiffInput[T], /, dim1: int = -2, dim2: int = -1) -> T:
    (ad,) = ensure_autodiffables(ad)
    axes = list(range(ad.shape.ndims))
    axes[dim1], axes[dim2] = axes[dim2], axes[dim1]
    return permute(ad, *axes)


@differentiable("reverse")
def reverse(ad: AutoDiffable, /) -> tuple[runtime.Buffer, graph.BackwardRule]:
    """Reverses the tensor along the 0th axis"""
    return ad.device.reverse(ad.buffer), Reverse()


@differentiable("band")
def band(
    ad: AutoDiffable, /, below: int | None = None, above: int | None = None
) -> tuple[runtime.Buffer, graph.BackwardRule]:
    """Zeros every element more than `below` under / `above` over the diagonal, None keeps that side"""
    return ad.device.band(ad.buffer, below, above), Band(below, above)


@differentiable("diag")
def diagonal_elements(ad: AutoDiffable, /) -> tuple[runtime.Buffer, graph.BackwardRule]:
    return ad.device.extract_diagonal(ad.buffer), DiagonalMatrix(ad.shape)


@differentiable("diag-mat")
def diagonal_matrix(
    ad: AutoDiffable, /, shape: Sequence[int] | None = None
) -> tuple[runtime.Buffer, graph.BackwardRule]:
    """Matrix with `ad` on its diagonal and zeros everywhere else, square unless `shape` is given"""
    matrix_shape = None if shape is None else shapes.Shape(tuple(shape))
    return ad.device.insert_diagonal(ad.buffer, matrix_shape), DiagonalElements()


@differentiable("subscript")
def select(ad: AutoDiffable, /, index: shapes.Index) -> tuple[runtime.Buffer, graph.BackwardRule]:
    return ad.device.select(ad.buffer, index), Scatter(ad.shape, index)


def assign(target: T, index: shapes.Index, value: AutoDiffInput[T]) -> T:
    """
    In-place write of `value` into a sub-range of `target`.
    A buffer still shared with other tensors is copied first.
    """
    target, value = ensure_autodiffables(target, value)
    assert target.device == value.device, f"device mismatch: {target.device=} <> {value.device=}"
    tracked = config.Configuration.grad_enabled and (target.requires_grad or value.requires_grad)
    sources = (target._alias(), value._alias()) if tracked else (value,)
    if target.buffer.is_shared:
        target._attach(target.device.copy(target.buffer))
    target.device.assign(target.buffer, index, value.buffer)
    if tracked:
        target.context = create_context(
            "subscript-set", sources, (MaskOut(target.shape, index), Gather(value.shape, index))
        )
        target.requires_grad = True
    config.Configuration.on_tensor_creation("subscript-set", sources, target)
    return target


def padded(ad: AutoDiffInput[T], /, padding: Sequence[int | tuple[int, int]], value: float = 0) -> T:
    """
    Surround `ad` with `value`, `padding` holds one entry per axis:
    either `n` (n before & after) or `(before, after)`
    """
    (ad,) = ensure_autodiffables(ad)
    assert len(padding) == ad.shape.ndims, f"{padding=} needs one entry per axis of {ad.shape}"
    pairs = [(p, p) if isinstance(p, numbers.Integral) else tuple(p) for p in padding]
    assert all(lo >= 0 and hi >= 0 for lo, hi in pairs), f"{padding=} must be non-negative"
    result = full_like(ad, shapes.Shape(tuple(d + lo + hi for d, (lo, hi) in zip(ad.shape, pairs))), value)
    return assign(result, tuple(slice(lo, lo + d) for d, (lo, _) in zip(ad.shape, pairs)), ad)


def repeated(ad: AutoDiffInput[T], /, times: int) -> T:
    """Stack `times` copies of `ad` along a new 0th axis"""
    (ad,) = ensure_autodiffables(ad)
    assert times >= 0, f"{times=} must be non-negative"
    return add(full_like(ad, shapes.Shape((times, *ad.shape)), 0), ad)


def one_hot(ad: AutoDiffInput[T], /, dim: int) -> T:
    """One-hot encoding of the integer labels in `ad` along a new last axis of size `dim`, never tracked"""
    (ad,) = ensure_autodiffables(ad)
    labels = ad.numpy().astype(np.int64)
    assert np.all((labels >= 0) & (labels < dim)), f"labels must lie in [0, {dim=})"
    return type(ad)(np.eye(dim)[labels], device=ad.device)


### Binary gradient defs ###
@differentiable("add")
def add(ad1: AutoDiffable, ad2: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule, graph.BackwardRule]:
    forward = ad1.device.binary(llops.BinaryOps.ADD, ad1.buffer, ad2.buffer)
    return forward, ReduceTo(ad1.shape), ReduceTo(ad2.shape)


@differentiable("sub")
def sub(ad1: AutoDiffable, ad2: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule, graph.BackwardRule]:
    forward = ad1.device.binary(llops.BinaryOps.SUB, ad1.buffer, ad2.buffer)
    return forward, ReduceTo(ad1.shape), ReduceTo(ad2.shape, negate=True)


@differentiable("mul")
def mul(ad1: AutoDiffable, ad2: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule, graph.BackwardRule]:
    forward = ad1.device.binary(llops.BinaryOps.MUL, ad1.buffer, ad2.buffer)
    return forward, Scale(ad2, ad1.shape), Scale(ad1, ad2.shape)


@differentiable("div")
def div(ad1: AutoDiffable, ad2: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule, graph.BackwardRule]:
    forward = ad1.device.binary(llops.BinaryOps.DIV, ad1.buffer, ad2.buffer)
    return forward, DivideBy(ad2, ad1.shape), QuotientDivisor(ad1, ad2, ad2.shape)


@differentiable("matmul")
def matmul(ad1: AutoDiffable, ad2: AutoDiffable) -> tuple[runtime.Buffer, graph.BackwardRule, graph.BackwardRule]:
    """
    Matrix product over the last two axes, leading batch axes broadcast like binary ops
    """
    forward = ad1.device.matmul(ad1.buffer, ad2.buffer)
    return forward, MatmulLhs(ad2, ad1.shape), MatmulRhs(ad1, ad2.shape)


def neg(ad: AutoDiffInput[T], /) -> T:
    return sub(0, ad)


### reduce gradient defs ###
@differentiable("sum")
def sum(
    ad: AutoDiffable, /, axis: int | None = None, keepdims: bool = False
) -> tuple[runtime.Buffer, graph.BackwardRule]:
    forward = ad.device.reduce(llops.ReduceOps.SUM, ad.buffer, axis, keepdims)
    return forward, ExpandReduced(ad.shape, axis, keepdims)


@differentiable("mean")
def mean(
    ad: AutoDiffable, /, axis: int | None = None, keepdims: bool = False
) -> tuple[runtime.Buffer, graph.BackwardRule]:
    _, length, _ = ad.shape.reduction_layout(axis)
    forward = ad.device.reduce(llops.ReduceOps.MEAN, ad.buffer, axis, keepdims)
    return forward, ExpandReduced(ad.shape, axis, keepdims, scale=1 / max(length, 1))


@differentiable("var")
def var(
    ad: AutoDiffable, /, axis: int | None = None, keepdims: bool = False
) -> tuple[runtime.Buffer, graph.BackwardRule]:
    """Population variance"""
    forward = ad.device.reduce(llops.ReduceOps.VAR, ad.buffer, axis, keepdims)
    return forward, VarianceGrad(ad, axis, keepdims)


### Autodiff executor ###
def gradients(
    targets: Sequence[T],
    roots: Sequence[AutoDiffable],
    seeds: Sequence[AutoDiffInput[AutoDiffable]] | None = None,
    retain_graph: bool = False,
) -> list[T]:
    """
    Gradients of the `roots` (seeded with ones, or `seeds`) w.r.t. each of the `targets`.
    retain_graph: keep the graph contexts & record the backward ops for higher order gradients
    """
    seeds = [full_like(root, root.shape, 1) for root in roots] if seeds is None else seeds
    seeds = [ensure_autodiffables(root, seed)[1] for root, seed in zip(roots, seeds, strict=True)]
    order = graph.topological_sort(roots)
    logger.debug("backward over %d nodes, %d targets, %s", len(order), len(targets), f"{retain_graph=}")

    grads: dict[graph.NodeKey, AutoDiffable] = {}

    def accumulate(node: graph.Node, grad: AutoDiffable) -> None:
        assert grad.shape == node.shape, f"gradient {grad.shape=} does not match {node.shape=}"
        key = graph.node_key(node)
        grads[key] = grad if (previous := grads.get(key)) is None else add(previous, grad)

    for root, seed in zip(roots, seeds, strict=True):
        accumulate(root, seed)
    with config.Configuration(grad_enabled=retain_graph):
        for node in order:
            if (context := node.context) is None or (grad := grads.get(graph.node_key(node))) is None:
                continue
            if context.released:
                raise RuntimeError(
                    f"Backward graph of {context} was already released."
                    f" Pass `retain_graph=True` to differentiate through it more than once."
                )
            for src, rule in zip(context.sources, context.backward, strict=True):
                accumulate(src, rule(grad))
            if not retain_graph:
                context.release()
    return [grads[key] if (key := graph.node_key(t)) in grads else full_like(t, t.shape, 0) for t in targets]  # type: ignore


### helpers ###
def reduce_to(ad: AutoDiffInput[T], shape: shapes.Shape) -> T:
    """Sum the broadcast tiles of `ad` back into `shape`"""
    (ad,) = ensure_autodiffables(ad)
    if ad.shape == shape:
        return ad
    assert shape.is_tile_of(ad.shape), f"{shape=} is not broadcast to {ad.shape=}"
    tiles = reshape(ad, (ad.shape.size // max(shape.size, 1), shape.size))
    return reshape(sum(tiles, axis=0), shape.dims)


def expand_along(ad: AutoDiffInput[T], shape: shapes.Shape, axis: int | None, keepdims: bool = False) -> T:
    """Repeat a reduction result along the reduced `axis` to recover `shape`"""
    (ad,) = ensure_autodiffables(ad)
    if axis is None:
        return mul(full_like(ad, shape, 1), reshape(ad, ()))
    (axis,) = shape.normalize_axes(axis)
    if keepdims:
        ad = reshape(ad, shape.dropaxes(axis).dims)
    order = (axis, *(i for i in range(shape.ndims) if i != axis))
    tiled = mul(full_like(ad, shape.permute(order), 1), ad)
    return permute(tiled, *sorted(range(len(order)), key=order.__getitem__))


def full_like(ad: T, shape: shapes.Shape, value: float) -> T:
    return type(ad).from_buffer(ad.device.full(shape, value))


def ensure_autodiffables(*values: AutoDiffInput[T]) -> tuple[T, ...]:
    """Promote python / numpy values to tensors of the same type & device as the first tensor"""
    ref = next((v for v in values if isinstance(v, AutoDiffable)), None)
    cls, device = (type(ref), ref.device) if ref is not None else (AutoDiffable, config.Configuration.engine)
    return tuple(v if isinstance(v, AutoDiffable) else cls(v, device=device) for v in values)  # type: ignore


def parameters_requiring_grad(autodiffables: Iterable[T]) -> tuple[T, ...]:
    seen_ids: set[int] = set()
    params = []
    for param in autodiffables:
        if param.requires_grad and id(param) not in seen_ids:
            seen_ids.add(id(param))
            params.append(param)
    return tuple(params)
