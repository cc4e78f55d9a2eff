"""
The backward graph.

Every tracked tensor holds a `GraphContext` naming the op that produced it,
the (snapshotted) source tensors and one `BackwardRule` per source.
Tensors are the graph nodes, their identity is the pair (buffer, context).
"""

from __future__ import annotations

import abc
import dataclasses
from typing import TYPE_CHECKING, Iterable, Protocol

if TYPE_CHECKING:
    from leangrad import runtime, shapes

NodeKey = tuple[int, int]


class Node(Protocol):
    buffer: runtime.Buffer
    context: GraphContext | None
    requires_grad: bool

    @property
    def shape(self) -> shapes.Shape: ...


class BackwardRule(abc.ABC):
    """Maps the gradient of a context's owner to the partial gradient of one source"""

    @abc.abstractmethod
    def __call__(self, output_grad: Node) -> Node: ...


@dataclasses.dataclass(slots=True, eq=False)
class GraphContext:
    tag: str
    sources: tuple[Node, ...]
    backward: tuple[BackwardRule, ...]
    released: bool = False

    def __post_init__(self) -> None:
        assert len(self.sources) == len(self.backward), f"{len(self.sources)=} != {len(self.backward)=}"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.tag}, n_sources={len(self.sources)}, {self.released=})>"

    def release(self) -> None:
        self.sources, self.backward, self.released = (), (), True  # NOTE: deref for garbage collector


def node_key(node: Node) -> NodeKey:
    return id(node.buffer), id(node.context)


def topological_sort(roots: Iterable[Node]) -> list[Node]:
    """
    Nodes reachable from `roots`, each node placed before all of its sources.
    Iterative post-order DFS, every node identity is visited once.
    """
    visited: set[NodeKey] = set()
    post_order: list[Node] = []
    for root in roots:
        if node_key(root) in visited:
            continue
        visited.add(node_key(root))
        stack = [(root, iter(_sources(root)))]
        while stack:
            node, pending = stack[-1]
            for src in pending:
                if (key := node_key(src)) not in visited:
                    visited.add(key)
                    stack.append((src, iter(_sources(src))))
                    break
            else:
                post_order.append(node)
                stack.pop()
    return post_order[::-1]


def _sources(node: Node) -> tuple[Node, ...]:
    return () if node.context is None else node.context.sources
