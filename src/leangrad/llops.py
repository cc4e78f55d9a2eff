"""
Low level ops that every engine must support.
Tribute to [Chief Keef - Opps](https://www.youtube.com/watch?v=0XbrR1veyyI)
"""

from __future__ import annotations

import enum


class LLOps(enum.Enum): ...


class UnaryOps(LLOps):
    EXP = enum.auto()
    LOG = enum.auto()
    SQRT = enum.auto()
    SIN = enum.auto()
    COS = enum.auto()
    TAN = enum.auto()
    SINH = enum.auto()
    COSH = enum.auto()
    TANH = enum.auto()
    SQUARE = enum.auto()
    RELU = enum.auto()
    HEAVISIDE = enum.auto()


class BinaryOps(LLOps):
    ADD = enum.auto()
    SUB = enum.auto()
    MUL = enum.auto()
    DIV = enum.auto()


class ReduceOps(LLOps):
    SUM = enum.auto()
    MEAN = enum.auto()
    VAR = enum.auto()
