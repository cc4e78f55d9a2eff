import numpy as np

from leangrad import config, layers, runtime, tensors


def test_dense_shapes_and_params(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        layer = layers.Dense(4, 3, activation=tensors.Tensor.relu)
        out = layer(tensors.Tensor.random_normal(8, 4))
        no_bias = layers.Dense(4, 3, bias=False)
    assert out.shape.dims == (8, 3)
    assert (out.numpy() >= 0).all()
    assert [p.shape.dims for p in layer.params()] == [(4, 3), (3,)]
    assert len(no_bias.params()) == 1
    assert isinstance(layer, layers.HasParameters)


def test_batchnorm_normalizes_over_the_batch(engine: runtime.Engine) -> None:
    data = np.random.normal(3, 5, size=(64, 4))
    with config.Configuration(engine=engine):
        norm = layers.BatchNorm(4)
        out = norm(tensors.Tensor(data)).numpy()
    assert np.allclose(out.mean(axis=0), 0, atol=1e-6)
    assert np.allclose(out.var(axis=0), 1, atol=1e-3)


def test_batchnorm_gradients_reach_params(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        norm = layers.BatchNorm(2)
        x = tensors.Tensor(np.random.normal(size=(8, 2)), requires_grad=True)
        loss = (norm(x) * tensors.Tensor([1.0, -1.0])).sum()
        grad_x, grad_scale, grad_shift = loss.gradients(of=[x, norm.scale, norm.shift])
    assert grad_x.shape.dims == (8, 2)
    assert np.allclose(grad_x.numpy(), 0, atol=1e-6)  # normalized values sum to zero per feature
    assert np.allclose(grad_scale.numpy(), 0, atol=1e-6)
    assert grad_shift.realize() == [8, -8]


def test_sequential_collects_params(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        model = layers.Sequential(layers.Dense(3, 5, activation=tensors.Tensor.tanh), layers.BatchNorm(5), layers.Dense(5, 1))
        out = model(tensors.Tensor.random_normal(6, 3))
    assert out.shape.dims == (6, 1)
    assert len(model.params()) == 6
