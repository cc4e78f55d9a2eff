import math
from typing import Callable, Iterable, Protocol, runtime_checkable

from leangrad import tensors


@runtime_checkable
class SupportsForward(Protocol):
    def __call__(self, x: tensors.Tensor, /) -> tensors.Tensor: ...


@runtime_checkable
class HasParameters(Protocol):
    def params(self) -> Iterable[tensors.Tensor]: ...


class Dense(SupportsForward, HasParameters):
    def __init__(
        self,
        input_size: int,
        output_size: int,
        bias: bool = True,
        activation: Callable[[tensors.Tensor], tensors.Tensor] | None = None,
    ) -> None:
        self.input_size = input_size
        self.output_size = output_size
        glorot_ub = math.sqrt(6 / (input_size + output_size))
        self.weights = tensors.Tensor.random_uniform(
            input_size,
            output_size,
            lb=-glorot_ub,
            ub=glorot_ub,
            requires_grad=True,
        )
        self.bias = tensors.Tensor.zeros(output_size, requires_grad=True) if bias else None
        self.activation = activation

    def __call__(self, x: tensors.Tensor) -> tensors.Tensor:
        out = x @ self.weights
        out = out + self.bias if self.bias is not None else out
        return out if self.activation is None else self.activation(out)

    def params(self) -> list[tensors.Tensor]:
        return [self.weights, self.bias] if self.bias is not None else [self.weights]


class BatchNorm(SupportsForward, HasParameters):
    """
    Normalizes every feature over the batch (axis 0), then rescales with the learned `scale` & `shift`.
    input: (batch, features)
    """

    def __init__(self, num_features: int, epsilon: float = 1e-5) -> None:
        self.num_features = num_features
        self.epsilon = epsilon
        self.scale = tensors.Tensor.ones(num_features, requires_grad=True)
        self.shift = tensors.Tensor.zeros(num_features, requires_grad=True)

    def __call__(self, x: tensors.Tensor) -> tensors.Tensor:
        assert x.shape.ndims == 2 and x.shape[1] == self.num_features, f"{x.shape=} <> {self.num_features=}"
        normalized = (x - x.mean(axis=0)) / (x.var(axis=0) + self.epsilon).sqrt()
        return normalized * self.scale + self.shift

    def params(self) -> list[tensors.Tensor]:
        return [self.scale, self.shift]


class Sequential(SupportsForward, HasParameters):
    def __init__(self, *layers: SupportsForward) -> None:
        self.layers = layers

    def __call__(self, x: tensors.Tensor) -> tensors.Tensor:
        for layer in self.layers:
            x = layer(x)
        return x

    def params(self) -> list[tensors.Tensor]:
        return [p for layer in self.layers if isinstance(layer, HasParameters) for p in layer.params()]

