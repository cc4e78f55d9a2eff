import abc
import logging
from typing import Any, Iterable, Iterator

from leangrad import autograd, config

logger = logging.getLogger(__name__)


class Optimizer(abc.ABC):
    def __init__(self, autodiffables: Iterable[autograd.AutoDiffable], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.params = autograd.parameters_requiring_grad(autodiffables)

    @abc.abstractmethod
    def calc_delta(self, grads: Iterable[autograd.AutoDiffable]) -> Iterator[autograd.AutoDiffable]: ...

    def step(self, loss: autograd.AutoDiffable) -> None:
        """Differentiate `loss` w.r.t. every param, then update the params in place"""
        grads = loss.gradients(of=self.params)
        with config.no_grad():
            for param, delta in zip(self.params, self.calc_delta(grads), strict=True):
                autograd.assign(param, (), autograd.add(param, delta))
        logger.debug("%s updated %d params", type(self).__name__, len(self.params))


class SGD(Optimizer):
    def __init__(self, autodiffables: Iterable[autograd.AutoDiffable], lr: float) -> None:
        super().__init__(autodiffables)
        self.lr = lr

    def calc_delta(self, grads: Iterable[autograd.AutoDiffable]) -> Iterator[autograd.AutoDiffable]:
        return (autograd.mul(grad, -self.lr) for grad in grads)
