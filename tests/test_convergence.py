import numpy as np

from leangrad import config, layers, optimizers, runtime, tensors


def test_sgd_training_loop(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        a = tensors.Tensor.random_normal(1, 5, mean=5, std=2, requires_grad=False)
        b = tensors.Tensor.random_normal(5, 1, mean=5, std=2, requires_grad=True)
        opt = optimizers.SGD((a, b), lr=0.001)

        initial_loss, loss_val = None, None
        for _ in range(200):
            loss = (((a @ b) - 10).square()).sum()
            loss_val = loss.item()
            opt.step(loss)
            if initial_loss is None:
                initial_loss = loss_val

    assert initial_loss is not None
    assert loss_val is not None
    assert 0 <= loss_val < 0.01 < initial_loss  # Ensure loss decreases and is not zero


def test_dense_regression(engine: runtime.Engine) -> None:
    inputs = np.random.uniform(-1, 1, size=(32, 3))
    targets = inputs @ np.array([[1.0], [-2.0], [0.5]]) + 0.25
    with config.Configuration(engine=engine):
        model = layers.Dense(3, 1)
        opt = optimizers.SGD(model.params(), lr=0.1)
        x, y = tensors.Tensor(inputs), tensors.Tensor(targets)
        losses = []
        for _ in range(300):
            loss = (model(x) - y).square().mean()
            losses.append(loss.item())
            opt.step(loss)
    assert losses[-1] < 1e-3 < losses[0]
    assert np.allclose(model.bias.realize(), [0.25], atol=0.05)


def test_step_does_not_track_the_update(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        param = tensors.Tensor([1.0, 2.0], requires_grad=True)
        optimizers.SGD([param, param], lr=0.5).step((param * param).sum())
    assert param.realize() == [0, 0]
    assert param.context is None and param.requires_grad
