import pathlib

import visualization

from leangrad import config, tensors

STATIC_DIR = pathlib.Path("static")


def plot_matmul_fwd(params_list: list, mat_list: list) -> None:
    visualizer = visualization.GraphVisualizer(STATIC_DIR / "matmul-forward.png")
    visualizer.graph.graph_attr.update(rankdir="BT", label="Matmul forward pass", labeljust="l")
    with config.Configuration(visualizer):
        params = tensors.Tensor(params_list, requires_grad=True)
        mat = tensors.Tensor(mat_list)
        (params @ mat).sum()


def plot_matmul_backward(params_list: list, mat_list: list) -> None:
    params = tensors.Tensor(params_list, requires_grad=True)
    mat = tensors.Tensor(mat_list)
    loss = (params @ mat)[0, 0]
    visualizer = visualization.GraphVisualizer(STATIC_DIR / "matmul-backward.png")
    visualizer.graph.graph_attr.update(rankdir="TB", label="Matmul backward pass", labeljust="l")
    with config.Configuration(visualizer):
        (grad,) = loss.gradients(of=[params])
    print(grad)


if __name__ == "__main__":
    STATIC_DIR.mkdir(exist_ok=True)
    params_list = [[1, 2], [3, 4]]
    mat_list = [[2, 0], [1, 2]]
    plot_matmul_fwd(params_list, mat_list)
    plot_matmul_backward(params_list, mat_list)
