"""
Logging
"""

from logging_callback.logging_callback import LeanGradLogger, default_logger

__all__ = ["LeanGradLogger"]


import leangrad

leangrad.Configuration(logger := LeanGradLogger())
default_logger.info("%s set as logger for leangrad", str(logger))
