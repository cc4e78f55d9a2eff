"""
Graph visualization
"""

from visualization.graph_visualizer import GraphVisualizer

__all__ = ["GraphVisualizer"]
