from typing import Callable

import numpy as np
import pytest

from leangrad import autograd, config, runtime, tensors


def numerical_gradient(func: Callable[[np.ndarray], float], x: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    grad = np.zeros_like(x)
    for idx in np.ndindex(*x.shape):
        step = np.zeros_like(x)
        step[idx] = eps
        grad[idx] = (func(x + step) - func(x - step)) / (2 * eps)
    return grad


def check_gradient(
    engine: runtime.Engine, func: Callable[[tensors.Tensor], tensors.Tensor], x: np.ndarray, atol: float = 1e-5
) -> None:
    with config.Configuration(engine=engine):
        param = tensors.Tensor(x, requires_grad=True)
        (grad,) = func(param).sum().gradients(of=[param])

        def evaluate(value: np.ndarray) -> float:
            with config.no_grad():
                return func(tensors.Tensor(value)).sum().item()

        assert np.allclose(grad.numpy(), numerical_gradient(evaluate, x), atol=atol)


def test_scalar_polynomial(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor(3.0, requires_grad=True)
        y = x * x + x
        (grad,) = y.gradients(of=[x])
    assert grad.realize() == 7


def test_dotprod_backprop(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        params = tensors.Tensor([[1, 2, 4], [4, 5, 6], [7, 8, 9]], requires_grad=True)
        a = (params @ tensors.Tensor([[2], [3], [4]])).sum()
        (grad,) = a.gradients(of=[params])
    assert grad.realize() == [[2, 3, 4]] * 3


def test_non_square_matrix_mul_backprop(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        params = tensors.Tensor([[1, 2, 3], [4, 5, 6]], requires_grad=True)
        mat = tensors.Tensor([[1, 2], [3, 4], [5, 6]], requires_grad=True)
        a = (params @ mat).sum()
        grad_params, grad_mat = a.gradients(of=[params, mat])
    assert np.allclose(grad_params.realize(), [[3, 7, 11]] * 2)
    assert np.allclose(grad_mat.realize(), [[5, 5], [7, 7], [9, 9]])


def test_broadcast_gradient_is_summed_over_tiles(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([[1, 2], [3, 4], [5, 6]], requires_grad=True)
        bias = tensors.Tensor([10, 20], requires_grad=True)
        grad_x, grad_bias = (x * bias).sum().gradients(of=[x, bias])
    assert grad_x.realize() == [[10, 20]] * 3
    assert grad_bias.realize() == [9, 12]


@pytest.mark.parametrize(
    "func",
    [
        lambda x: x * x,
        lambda x: x / (x + 3),
        lambda x: 2 / (x + 3),
        lambda x: 1 - x,
        lambda x: -x,
        lambda x: x.exp(),
        lambda x: (x + 3).log(),
        lambda x: (x + 3).sqrt(),
        lambda x: x.sin(),
        lambda x: x.cos(),
        lambda x: (x * 0.5).tan(),
        lambda x: x.sinh(),
        lambda x: x.cosh(),
        lambda x: x.tanh(),
        lambda x: x.square(),
        lambda x: x.relu(),
    ],
)
def test_elementwise_gradients(func: Callable[[tensors.Tensor], tensors.Tensor], engine: runtime.Engine) -> None:
    check_gradient(engine, func, np.array([[0.3, -0.7, 1.2], [-1.1, 0.9, 0.4]]))


@pytest.mark.parametrize(
    "func",
    [
        lambda x: x.sum(axis=0) * tensors.Tensor([1, 2, 3], device=x.device),
        lambda x: x.mean(axis=0, keepdims=True) * x,
        lambda x: x.mean() * x,
        lambda x: x.var(axis=0) * tensors.Tensor([1, 2, 3], device=x.device),
        lambda x: x.var(axis=-1, keepdims=True),
        lambda x: x.var() * 3,
        lambda x: x.sum(axis=None, keepdims=True) * x,
        lambda x: x.reshape((3, 2)) @ x,
        lambda x: x.reshape((-1, 2)) @ x,
        lambda x: x.permute(1, 0) @ x.square(),
        lambda x: x.transpose(0, 1).flatten() * tensors.Tensor.arange(0, 6, device=x.device),
        lambda x: x.reversed() * tensors.Tensor([[1, 2, 3], [4, 5, 6]], device=x.device),
        lambda x: (x @ x.transpose()).band(0, None) * tensors.Tensor([[1, 2], [3, 4]], device=x.device),
        lambda x: x.diagonal_elements() * tensors.Tensor([3, 4], device=x.device),
        lambda x: x.sum(axis=1).diagonal_matrix((2, 3)) * x,
        lambda x: x[1] * x[0, 1:].sum(),
        lambda x: x[:, ::2] * x[:, 1:],
        lambda x: x.padded([1, (0, 2)], value=0.5).square(),
        lambda x: x.repeated(3).square() * tensors.Tensor([[1, 2, 3], [4, 5, 6]], device=x.device),
    ],
)
def test_composite_gradients(func: Callable[[tensors.Tensor], tensors.Tensor], engine: runtime.Engine) -> None:
    check_gradient(engine, func, np.array([[0.3, -0.7, 1.2], [-1.1, 0.9, 0.4]]))


def test_batched_matmul_gradients(engine: runtime.Engine) -> None:
    rhs = np.random.normal(size=(3, 4))
    check_gradient(engine, lambda x: x @ tensors.Tensor(rhs, device=x.device), np.random.normal(size=(2, 5, 3)))
    lhs = np.random.normal(size=(2, 5, 3))
    check_gradient(engine, lambda x: tensors.Tensor(lhs, device=x.device) @ x, np.random.normal(size=(3, 4)))


def test_setitem_gradients(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        target = tensors.Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
        value = tensors.Tensor([5.0], requires_grad=True)
        written = target * 1
        written[0] = value
        loss = (written * tensors.Tensor([[1, 2], [3, 4]])).sum()
        grad_target, grad_value = loss.gradients(of=[target, value])
    assert grad_target.realize() == [[0, 0], [3, 4]]
    assert grad_value.realize() == [3]
    assert written.realize() == [[5, 5], [3, 4]]


def test_gradients_accumulate_over_paths(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = x * 2
        loss = (y * y + y + x).sum()
        (grad,) = loss.gradients(of=[x])
    assert grad.realize() == [4 * 2 * 1 + 2 + 1, 4 * 2 * 2 + 2 + 1]


def test_unreached_target_gets_zeros(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        unused = tensors.Tensor([[1.0, 2.0]], requires_grad=True)
        grad_x, grad_unused = (x * 3).sum().gradients(of=[x, unused])
    assert grad_x.realize() == [3, 3]
    assert grad_unused.realize() == [[0, 0]]


def test_graph_is_pruned_without_requires_grad(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0])
        y = (x * x).sum()
        assert y.context is None and not y.requires_grad
        (grad,) = y.gradients(of=[x])
    assert grad.realize() == [0, 0]


def test_no_grad_disables_tracking(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        with config.no_grad():
            y = x * x
        z = x * x
    assert y.context is None
    assert z.context is not None and z.context.tag == "mul"


def test_released_graph_can_not_be_traversed_twice(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = (x * x).sum()
        y.gradients(of=[x])
        with pytest.raises(RuntimeError):
            y.gradients(of=[x])


def test_retained_graph_second_order(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = (x * x * x).sum()
        (first,) = y.gradients(of=[x], retain_graph=True)
        (second,) = first.sum().gradients(of=[x], retain_graph=True)
        (again,) = y.gradients(of=[x])
    assert first.realize() == [3, 12]
    assert second.realize() == [6, 12]
    assert again.realize() == [3, 12]


def test_explicit_seeds(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = x * x
        (grad,) = autograd.gradients([x], [y], seeds=[tensors.Tensor([1.0, 10.0])])
        with pytest.raises(AssertionError):
            autograd.gradients([x], [x * x], seeds=[tensors.Tensor([1.0, 2.0, 3.0])])
    assert grad.realize() == [2, 40]


def test_in_place_writes_do_not_alter_recorded_graph(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        factor = tensors.Tensor([3.0, 4.0])
        y = (x * factor).sum()
        factor[0] = 100
        (grad,) = y.gradients(of=[x])
    assert grad.realize() == [3, 4]
    assert factor.realize() == [100, 4]


def test_copy_on_write_keeps_readers_intact(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([[1.0, 2.0], [3.0, 4.0]])
        view = x.reshape((4,))
        x[0, 0] = 9
    assert view.realize() == [1, 2, 3, 4]
    assert x.realize() == [[9, 2], [3, 4]]


def test_detached_stops_gradients(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = (x * x.detached()).sum()
        (grad,) = y.gradients(of=[x])
    assert grad.realize() == [1, 2]
