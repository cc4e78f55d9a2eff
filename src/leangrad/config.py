"""
# Global configuration for the leangrad package.

User can modify this configuration in 2 ways:

## Permanent change
```python
from leangrad import config
config.Configuration(engine=engine)
```

## Temporary change
```python
from leangrad import config
with config.Configuration(engine=engine, grad_enabled=False):
    ...
```
"""

from __future__ import annotations

import collections
import types
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Type

from leangrad import callbacks

if TYPE_CHECKING:
    from leangrad import graph, runtime


class _StackedConfigMeta(type):
    __singletons__: ClassVar[dict[Type, Any]] = {}
    __context_stack__: collections.ChainMap[str, Any]  # stack of contexts that hold all attrs
    __callback_frames__: list[tuple[callbacks.Callback, ...]]  # callbacks registered per context
    __callback_stack__: callbacks.CallbackStack  # stack of callbacks

    def __call__(cls, *callback: callbacks.Callback, **config_dict: Any) -> type[Configuration]:
        assert not (kwargs := {k: v for k, v in config_dict.items() if v is None}), f"{kwargs=}"
        if cls not in cls.__singletons__:  # initialize:=set class vars for the first time
            cls.__context_stack__ = collections.ChainMap(config_dict)
            cls.__callback_frames__ = [callback]
            cls.__callback_stack__ = callbacks.CallbackStack(callback)
            cls.__singletons__[cls] = cls
        else:  # update the stacks with new contexts
            cls.__callback_stack__.insert_callbacks(*callback)
            cls.__callback_frames__.insert(0, callback)
            cls.__context_stack__.maps.insert(0, config_dict)
        return cls.__singletons__[cls]

    def __getattr__(cls, key: str) -> Any:
        if key.startswith("__") or cls not in cls.__singletons__:
            raise AttributeError(key)
        try:
            return cls.__context_stack__[key]
        except KeyError as exc:
            raise AttributeError(f"{cls.__name__} has no setting {key!r}") from exc

    def __enter__(cls) -> None:
        for enter_callback in cls._frame_callbacks(callbacks.OnCtxEnterCallBack):
            enter_callback.on_ctx_enter()

    def __exit__(cls, exc_type: type[Exception], exc_value: Exception, traceback: types.TracebackType) -> None:
        for exit_callback in cls._frame_callbacks(callbacks.OnCtxExitCallBack):
            exit_callback.on_ctx_exit(exc_type, exc_value, traceback)
        cls.__context_stack__.maps.pop(0)
        cls.__callback_stack__.drop_callbacks(*cls.__callback_frames__.pop(0))

    def _frame_callbacks(cls, callback_type: type[callbacks.CallbackType]) -> list[callbacks.CallbackType]:
        """Enter & exit callbacks fire only for the context that registered them"""
        return [cb for cb in cls.__callback_frames__[0] if isinstance(cb, callback_type)]


class Configuration(metaclass=_StackedConfigMeta):
    """Configuration for the leangrad package."""

    engine: runtime.Engine
    grad_enabled: bool

    def __init__(
        self,
        *callback: callbacks.Callback,
        engine: runtime.Engine | None = None,
        grad_enabled: bool | None = None,
        **context: Any,
    ) -> None: ...

    @classmethod
    def on_tensor_creation(cls, tag: str, sources: Iterable[graph.Node], result: graph.Node) -> None:
        for callback in cls.__callback_stack__[callbacks.OnTensorCreationCallBack]:
            callback.on_tensor_creation(tag, tuple(sources), result)


def no_grad() -> type[Configuration]:
    """Context in which no op attaches a graph context"""
    return Configuration(grad_enabled=False)
