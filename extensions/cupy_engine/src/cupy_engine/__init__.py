"""
GPU acceleration
"""

import logging

import cupy

from cupy_engine.cupy_engine import CuPyEngine


def setup_logger() -> logging.Logger:
    logger = logging.getLogger(__name__)  # Use __name__ to get the module name
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    logger.addHandler(console_handler)
    return logger


__all__ = ["CuPyEngine"]

import leangrad

## the CuPyEngine only becomes the default runtime when a CUDA device is present.
logger = setup_logger()
if cupy.cuda.is_available():
    leangrad.Configuration(engine=CuPyEngine())
    logger.info("%s set as leangrad runtime", CuPyEngine.__name__)
else:
    logger.info("no CUDA device found, %s stays the leangrad runtime", leangrad.Configuration.engine)
