from __future__ import annotations

import collections
import functools
import json
import pathlib
from typing import Any, Hashable, Self

FORMATS_DIR = pathlib.Path(__file__).parent / "formats"


class FormatSpec(collections.UserDict[str, Any]):
    """Graphviz attributes of one element kind, later specs override earlier ones on `|`"""

    @classmethod
    def load(cls, name: str) -> Self:
        return cls(**json.loads((FORMATS_DIR / f"{name}.json").read_text()))


class ElementFormatter(collections.defaultdict[Hashable, FormatSpec]):
    """
    Format lookup by key, e.g. the op tag.
    The `None` entry is the base every lookup starts from.
    """

    def __init__(self, *layers: str, **overrides: FormatSpec) -> None:
        super().__init__(FormatSpec)
        self[None] = functools.reduce(lambda acc, name: acc | FormatSpec.load(name), layers, FormatSpec())
        for key, spec in overrides.items():
            self[key].update(spec)

    def get_fmt(self, key: Hashable = None) -> FormatSpec:
        return self[None] | self.get(key, FormatSpec())
