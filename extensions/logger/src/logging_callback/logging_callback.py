import logging
import os

from leangrad import callbacks, graph

LOG_LEVEL_ENV_SETTER = "LEANGRAD_LOGLEVEL"


def setup_logger() -> logging.Logger:
    logger = logging.getLogger(__name__)
    logger.setLevel(logging._nameToLevel[os.environ.get(LOG_LEVEL_ENV_SETTER, "INFO")])
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-10s%(funcName)s: - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    logger.addHandler(console_handler)
    return logger


default_logger = setup_logger()


class LeanGradLogger(callbacks.OnTensorCreationCallBack):
    def __init__(self, logger: logging.Logger = default_logger) -> None:
        super().__init__()
        self._logger = logger

    def on_tensor_creation(self, tag: str, sources: tuple[graph.Node, ...], result: graph.Node) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.log(
                logging.DEBUG,
                "%(op)-12s(%(in shapes)-20s) → %(out shape)s%(tracked)s",
                {
                    "in shapes": ", ".join(str(src.shape.dims) for src in sources),
                    "op": tag,
                    "out shape": repr(result.shape),
                    "tracked": " [tracked]" if result.context is not None else "",
                },
            )

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(verbosity={self._logger.level})"
