import contextlib

from leangrad import callbacks
from leangrad.autograd import gradients
from leangrad.config import Configuration, no_grad
from leangrad.runtime import Engine, NumPyEngine
from leangrad.tensors import Tensor

### Default configuration ###
Configuration(engine=NumPyEngine(), grad_enabled=True)


__all__ = ["Engine", "NumPyEngine", "Configuration", "Tensor", "gradients", "no_grad", "callbacks"]

### install extras
with contextlib.suppress(ImportError):
    import cupy_engine
with contextlib.suppress(ImportError):
    import logging_callback
