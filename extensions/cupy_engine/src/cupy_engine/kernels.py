"""
CUDA C sources of the engine kernels.
Every kernel runs one thread per output element on a 1-D grid, `T` is the element type.
"""

import functools
import logging

import cupy
import numpy as np

from leangrad import llops

logger = logging.getLogger(__name__)

THREADS_PER_BLOCK = 256
TILE = 16
MAX_GRID_X, MAX_GRID_Y = 2**31 - 1, 65535
CTYPES = {np.dtype(np.float32): "float", np.dtype(np.float64): "double"}


def kernel_name(op: llops.LLOps) -> str:
    return f"{type(op).__name__.lower()}_{op.name.lower()}"


PRELUDE = """
typedef {ctype} T;
#define GLOBAL_INDEX ((long long)blockDim.x * blockIdx.x + threadIdx.x)

__device__ long long element_count(long long rank, const long long* dims) {{
    long long count = 1;
    for (long long k = 0; k < rank; ++k) count *= dims[k];
    return count;
}}
"""

UNARY_EXPRESSIONS = {
    llops.UnaryOps.EXP: "exp(x)",
    llops.UnaryOps.LOG: "log(x)",
    llops.UnaryOps.SQRT: "sqrt(x)",
    llops.UnaryOps.SIN: "sin(x)",
    llops.UnaryOps.COS: "cos(x)",
    llops.UnaryOps.TAN: "tan(x)",
    llops.UnaryOps.SINH: "sinh(x)",
    llops.UnaryOps.COSH: "cosh(x)",
    llops.UnaryOps.TANH: "tanh(x)",
    llops.UnaryOps.SQUARE: "x * x",
    llops.UnaryOps.RELU: "x > 0 ? x : (T)0",
    llops.UnaryOps.HEAVISIDE: "x > 0 ? (T)1 : (T)0",
}
BINARY_EXPRESSIONS = {
    llops.BinaryOps.ADD: "a + b",
    llops.BinaryOps.SUB: "a - b",
    llops.BinaryOps.MUL: "a * b",
    llops.BinaryOps.DIV: "a / b",
}
REDUCE_EXPRESSIONS = {
    llops.ReduceOps.SUM: "acc",
    llops.ReduceOps.MEAN: "acc / length",
    llops.ReduceOps.VAR: "sq / length",
}

UNARY = """
extern "C" __global__ void {name}(const T* src, T* result, long long count) {{
    long long i = GLOBAL_INDEX;
    if (i >= count) return;
    T x = src[i];
    result[i] = {expression};
}}
"""

# operands of a binary op tile the result, operand position = global position % operand count
BINARY = """
extern "C" __global__ void {name}(
    const T* lhs, long long lhs_rank, const long long* lhs_dims,
    const T* rhs, long long rhs_rank, const long long* rhs_dims,
    T* result, long long count
) {{
    long long i = GLOBAL_INDEX;
    if (i >= count) return;
    T a = lhs[i % element_count(lhs_rank, lhs_dims)];
    T b = rhs[i % element_count(rhs_rank, rhs_dims)];
    result[i] = {expression};
}}
"""

REDUCE = """
extern "C" __global__ void {name}(const T* src, T* result, long long outer, long long length, long long inner) {{
    long long i = GLOBAL_INDEX;
    if (i >= outer * inner) return;
    const T* first = src + (i / inner) * length * inner + (i % inner);
    T acc = 0;
    for (long long k = 0; k < length; ++k) acc += first[k * inner];
    T mean = acc / length;
    T sq = 0;
    for (long long k = 0; k < length; ++k) sq += (first[k * inner] - mean) * (first[k * inner] - mean);
    result[i] = {expression};
}}
"""

# 2-D grid over (cols, rows), the batch is folded into the x axis: blockIdx.x = b * col_blocks + col_block
MATMUL = """
extern "C" __global__ void matmul(
    const T* lhs, long long lhs_rank, const long long* lhs_dims,
    const T* rhs, long long rhs_rank, const long long* rhs_dims,
    T* result, long long result_rank, const long long* result_dims
) {
    long long rows = result_dims[result_rank - 2], cols = result_dims[result_rank - 1];
    long long col_blocks = (cols + blockDim.x - 1) / blockDim.x;
    long long b = blockIdx.x / col_blocks;
    long long col = (long long)blockDim.x * (blockIdx.x % col_blocks) + threadIdx.x;
    long long row = (long long)blockDim.y * blockIdx.y + threadIdx.y;
    if (row >= rows || col >= cols) return;
    long long inner = lhs_dims[lhs_rank - 1];
    long long lhs_batch = element_count(lhs_rank - 2, lhs_dims), rhs_batch = element_count(rhs_rank - 2, rhs_dims);
    const T* lhs_row = lhs + ((b % lhs_batch) * rows + row) * inner;
    const T* rhs_col = rhs + (b % rhs_batch) * inner * cols + col;
    T acc = 0;
    for (long long k = 0; k < inner; ++k) acc += lhs_row[k] * rhs_col[k * cols];
    result[(b * rows + row) * cols + col] = acc;
}
"""

ARANGE = """
extern "C" __global__ void arange(T lower, T stride, T* result, long long count) {
    long long i = GLOBAL_INDEX;
    if (i < count) result[i] = lower + stride * (T)i;
}
"""

REVERSE = """
extern "C" __global__ void reverse(const T* src, T* result, long long length, long long inner) {
    long long i = GLOBAL_INDEX;
    if (i >= length * inner) return;
    result[i] = src[(length - 1 - i / inner) * inner + i % inner];
}
"""

EXTRACT_DIAGONAL = """
extern "C" __global__ void extract_diagonal(const T* src, T* result, long long cols, long long count) {
    long long i = GLOBAL_INDEX;
    if (i < count) result[i] = src[i * cols + i];
}
"""

INSERT_DIAGONAL = """
extern "C" __global__ void insert_diagonal(const T* src, T* result, long long cols, long long count) {
    long long i = GLOBAL_INDEX;
    if (i < count) result[i * cols + i] = src[i];
}
"""

FILL_DIAGONAL = """
extern "C" __global__ void fill_diagonal(T value, T* result, long long cols, long long count) {
    long long i = GLOBAL_INDEX;
    if (i < count) result[i * cols + i] = value;
}
"""

BAND = """
extern "C" __global__ void band(
    const T* src, T* result, long long rows, long long cols, long long below, long long above, long long count
) {
    long long i = GLOBAL_INDEX;
    if (i >= count) return;
    long long offset = (i % cols) - (i / cols) % rows;
    result[i] = (offset >= -below && offset <= above) ? src[i] : (T)0;
}
"""

SOURCES = {"matmul": MATMUL, "arange": ARANGE, "reverse": REVERSE, "band": BAND}
SOURCES |= {"extract_diagonal": EXTRACT_DIAGONAL, "insert_diagonal": INSERT_DIAGONAL, "fill_diagonal": FILL_DIAGONAL}
SOURCES |= {kernel_name(op): UNARY.format(name=kernel_name(op), expression=e) for op, e in UNARY_EXPRESSIONS.items()}
SOURCES |= {kernel_name(op): BINARY.format(name=kernel_name(op), expression=e) for op, e in BINARY_EXPRESSIONS.items()}
SOURCES |= {kernel_name(op): REDUCE.format(name=kernel_name(op), expression=e) for op, e in REDUCE_EXPRESSIONS.items()}


@functools.cache
def compile_kernel(name: str, dtype: np.dtype) -> cupy.RawKernel:
    """Compiled once per (kernel, element type), NVRTC runs lazily on the first launch"""
    logger.debug("compiling %s for %s", name, dtype)
    return cupy.RawKernel(PRELUDE.format(ctype=CTYPES[np.dtype(dtype)]) + SOURCES[name], name)


def launch(name: str, dtype: np.dtype, count: int, *args: object) -> None:
    """1-D grid, one thread per element of `count`"""
    if count == 0:
        return
    blocks = (count + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK
    compile_kernel(name, np.dtype(dtype))((blocks,), (THREADS_PER_BLOCK,), args)


def launch_matrix(name: str, dtype: np.dtype, cols: int, rows: int, batch: int, *args: object) -> None:
    """2-D grid of (cols, rows) threads per matrix, the `batch` matrices sit side by side along x"""
    if cols * rows * batch == 0:
        return
    grid = (batch * ((cols + TILE - 1) // TILE), (rows + TILE - 1) // TILE)
    assert grid[0] <= MAX_GRID_X and grid[1] <= MAX_GRID_Y, f"{grid=} exceeds the CUDA grid limits"
    compile_kernel(name, np.dtype(dtype))(grid, (TILE, TILE), args)


@functools.lru_cache(maxsize=1024)
def device_dims(dims: tuple[int, ...]) -> cupy.ndarray:
    """Shape dims as a device array, kernels recompute their indices from it"""
    return cupy.asarray(dims, dtype=cupy.int64)
