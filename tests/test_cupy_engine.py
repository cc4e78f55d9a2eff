import numpy as np
import pytest

from leangrad import config, llops, runtime, shapes, tensors

cupy = pytest.importorskip("cupy")
cupy_engine = pytest.importorskip("cupy_engine")
pytestmark = pytest.mark.skipif(not cupy.cuda.is_available(), reason="no CUDA device")


@pytest.fixture
def engines() -> tuple[runtime.Engine, runtime.Engine]:
    return runtime.NumPyEngine(np.float64), cupy_engine.CuPyEngine(np.float64)


def test_ops_match_the_cpu_engine(engines) -> None:
    cpu, gpu = engines
    data = np.random.normal(size=(3, 4))
    for op in llops.UnaryOps:
        with np.errstate(all="ignore"):
            expected = cpu.unary(op, cpu.load(data)).to_python()
        assert np.allclose(gpu.unary(op, gpu.load(data)).to_python(), expected, equal_nan=True)
    for op in llops.BinaryOps:
        expected = cpu.binary(op, cpu.load(data), cpu.load(data[0])).to_python()
        assert np.allclose(gpu.binary(op, gpu.load(data), gpu.load(data[0])).to_python(), expected)
    for op in llops.ReduceOps:
        for axis in (None, 0, 1):
            expected = cpu.reduce(op, cpu.load(data), axis).to_python()
            assert np.allclose(gpu.reduce(op, gpu.load(data), axis).to_python(), expected)


def test_utility_ops_match_the_cpu_engine(engines) -> None:
    cpu, gpu = engines
    data = np.random.normal(size=(2, 3, 4))
    matrix = data[0]
    for name, args in [("reverse", ()), ("band", (1, 0)), ("band", (None, 1)), ("permute", ((2, 0, 1),))]:
        expected = getattr(cpu, name)(cpu.load(data), *args).to_python()
        assert np.allclose(getattr(gpu, name)(gpu.load(data), *args).to_python(), expected)
    assert np.allclose(gpu.extract_diagonal(gpu.load(matrix)).to_python(), np.diagonal(matrix))
    assert gpu.insert_diagonal(gpu.load([1, 2]), shapes.Shape((2, 3))).to_python() == [[1, 0, 0], [0, 2, 0]]
    assert gpu.fill_diagonal(2, 2).to_python() == [[2, 0], [0, 2]]
    assert gpu.arange(0, 2, 0.5).to_python() == [0, 0.5, 1, 1.5]
    lhs, rhs = np.random.normal(size=(2, 3, 4)), np.random.normal(size=(4, 5))
    assert np.allclose(gpu.matmul(gpu.load(lhs), gpu.load(rhs)).to_python(), lhs @ rhs)


def test_gradients_on_the_gpu(engines) -> None:
    _, gpu = engines
    with config.Configuration(engine=gpu):
        x = tensors.Tensor([[1.0, 2.0], [3.0, 4.0]], requires_grad=True)
        (grad,) = (x @ x).sum().gradients(of=[x])
    expected = np.ones((2, 2)) @ np.array([[1.0, 3.0], [2.0, 4.0]]) + np.array([[1.0, 2.0], [3.0, 4.0]]).T @ np.ones((2, 2))
    assert np.allclose(grad.numpy(), expected)


def test_matmul_batch_beyond_the_grid_z_limit(engines) -> None:
    cpu, gpu = engines
    lhs, rhs = np.random.normal(size=(70000, 2, 3)), np.random.normal(size=(3, 17))
    expected = cpu.matmul(cpu.load(lhs), cpu.load(rhs))
    result = gpu.matmul(gpu.load(lhs), gpu.load(rhs))
    assert result.shape == expected.shape
    assert np.allclose(gpu.to_numpy(result.objref), cpu.to_numpy(expected.objref))
