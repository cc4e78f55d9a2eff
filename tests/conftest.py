from __future__ import annotations

import contextlib
import random
from typing import TYPE_CHECKING, Callable

import numpy as np
import pytest

from leangrad import runtime

if TYPE_CHECKING:
    from _pytest.python import Metafunc

ENGINES: list[Callable[[], runtime.Engine]] = [lambda: runtime.NumPyEngine(np.float64)]

with contextlib.suppress(ImportError):
    import cupy

    if cupy.cuda.is_available():
        from cupy_engine import CuPyEngine

        ENGINES.append(lambda: CuPyEngine(np.float64))


def pytest_generate_tests(metafunc: Metafunc) -> None:
    if engine.__name__ in metafunc.fixturenames:
        metafunc.parametrize(engine.__name__, range(len(ENGINES)), indirect=True)


@pytest.fixture
def engine(request: pytest.FixtureRequest) -> runtime.Engine:
    return ENGINES[request.param]()


@pytest.fixture(autouse=True)
def set_random_seeds(seed: int = 42):
    np.random.seed(seed)
    random.seed(seed)
