import os
from typing import Any, Iterable

import pygraphviz as pgv
from visualization import formatting

from leangrad import callbacks, graph


class GraphVisualizer(callbacks.OnTensorCreationCallBack, callbacks.OnCtxExitCallBack):
    """
    Records every op of the context into a dot graph: data nodes carry shapes, op nodes the op tag.
    The graph is drawn to `output_path` when the context exits.
    """

    graph_format = formatting.ElementFormatter("graph")
    opnode_formatter = formatting.ElementFormatter("base", "opnode")
    datanode_formatter = formatting.ElementFormatter("base", "datanode")
    edge_formatter = formatting.ElementFormatter("base", "edge")

    def __init__(self, output_path: str | os.PathLike) -> None:
        self.output_path = output_path
        self._graph = pgv.AGraph(**self.graph_format.get_fmt())

    @classmethod
    def from_roots(cls, roots: Iterable[graph.Node], output_path: str | os.PathLike) -> "GraphVisualizer":
        """Visualize the recorded backward graph reachable from `roots`"""
        visualizer = cls(output_path)
        for node in reversed(graph.topological_sort(roots)):
            if node.context is None:
                visualizer._add_datanode(node)
            else:
                visualizer.on_tensor_creation(node.context.tag, node.context.sources, node)
        return visualizer

    def write_dot(self, path: str | os.PathLike) -> None:
        self._graph.draw(path, prog="dot", format="png")

    def on_tensor_creation(self, tag: str, sources: tuple[graph.Node, ...], result: graph.Node) -> None:
        self._add_opnode(tag, result)
        for src in sources:
            self._add_datanode(src)
            self._graph.add_edge(_get_data_nodename(src), _get_op_nodename(result), **self.edge_formatter.get_fmt())
        self._add_datanode(result)
        self._graph.add_edge(_get_op_nodename(result), _get_data_nodename(result), **self.edge_formatter.get_fmt())

    def on_ctx_exit(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.write_dot(self.output_path)

    def _add_opnode(self, tag: str, result: graph.Node) -> None:
        op_fmt = self.opnode_formatter.get_fmt(tag)
        self._graph.add_node(_get_op_nodename(result), label=tag, **op_fmt)

    def _add_datanode(self, node: graph.Node) -> None:
        data_fmt = self.datanode_formatter.get_fmt()
        label = f"{node.shape.dims}{' ∇' if node.requires_grad else ''}"
        self._graph.add_node(_get_data_nodename(node), label=label, **data_fmt)

    @property
    def graph(self) -> pgv.AGraph:
        return self._graph


def _get_op_nodename(node: graph.Node) -> str:
    return "op_{}_{}".format(*graph.node_key(node))


def _get_data_nodename(node: graph.Node) -> str:
    return "data_{}_{}".format(*graph.node_key(node))
