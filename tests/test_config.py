import numpy as np
import pytest

from leangrad import callbacks, config, optimizers, runtime, tensors


class RecordingCallback(callbacks.OnTensorCreationCallBack, callbacks.OnCtxEnterCallBack, callbacks.OnCtxExitCallBack):
    def __init__(self) -> None:
        self.tags: list[str] = []
        self.events: list[str] = []

    def on_tensor_creation(self, tag, sources, result) -> None:
        self.tags.append(tag)

    def on_ctx_enter(self) -> None:
        self.events.append("enter")

    def on_ctx_exit(self, exc_type, exc_value, traceback) -> None:
        self.events.append("exit")


def test_nested_configurations_restore_previous_values() -> None:
    outer_engine = config.Configuration.engine
    with config.Configuration(engine=runtime.NumPyEngine(np.float64)):
        assert config.Configuration.engine == runtime.NumPyEngine(np.float64)
        with config.Configuration(grad_enabled=False):
            assert config.Configuration.engine == runtime.NumPyEngine(np.float64)
            assert config.Configuration.grad_enabled is False
        assert config.Configuration.grad_enabled is True
    assert config.Configuration.engine == outer_engine


def test_unknown_setting_raises_attribute_error() -> None:
    with pytest.raises(AttributeError):
        config.Configuration.does_not_exist


def test_callbacks_are_scoped_to_their_context(engine: runtime.Engine) -> None:
    recorder = RecordingCallback()
    with config.Configuration(recorder, engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        y = (x * 2).exp()
        y[0] = 1
    x + 1
    assert recorder.tags == ["mul", "exp", "subscript-set"]
    assert recorder.events == ["enter", "exit"]


def test_no_grad_is_a_context(engine: runtime.Engine) -> None:
    with config.Configuration(engine=engine):
        x = tensors.Tensor([1.0], requires_grad=True)
        with config.no_grad():
            assert config.Configuration.grad_enabled is False
            assert (x * x).context is None
        assert (x * x).context is not None


def test_backward_and_step_do_not_refire_outer_callbacks(engine: runtime.Engine) -> None:
    recorder = RecordingCallback()
    with config.Configuration(recorder, engine=engine):
        x = tensors.Tensor([1.0, 2.0], requires_grad=True)
        (x * x).sum().gradients(of=[x])
        optimizers.SGD([x], lr=0.1).step((x * 3).sum())
        with config.no_grad():
            x + 1
        assert recorder.events == ["enter"]
    assert recorder.events == ["enter", "exit"]
