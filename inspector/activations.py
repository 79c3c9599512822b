"""
Softmax Kernel

Converts rows of attention logits into probability distributions.

Key Concepts:
- Each row of an attention score matrix is one query position
- Softmax turns that row into "how much this query attends to each key"
- Masked (future) positions carry a very negative logit and come out as ~0
"""

import numpy as np


def softmax(row):
    """
    Numerically stable softmax over a single row.

    Forward:
        softmax(x)_i = exp(x_i) / sum_j(exp(x_j))

    Numerical Stability:
        Computing exp(x) directly can overflow for large x values.
        We use the identity: softmax(x) = softmax(x - c) for any constant c.
        By choosing c = max(x), all exponents are <= 0, so nothing overflows
        and the largest entry always contributes exp(0) = 1 to the sum.

    A row that is entirely -inf (every position masked) has no finite
    maximum; it is treated like a row of equal sentinels and returns the
    uniform distribution.

    Args:
        row: Sequence of numbers, length >= 1

    Returns:
        Array of the same length, entries in [0, 1], summing to 1

    Raises:
        ValueError: if the row is empty
    """
    x = np.asarray(row, dtype=np.float64)
    if x.ndim != 1:
        raise ValueError(f"softmax expects a 1D row, got shape {x.shape}")
    if x.size == 0:
        raise ValueError("softmax of an empty row is undefined")

    x_max = np.max(x)
    if np.isneginf(x_max):
        return np.full(x.size, 1.0 / x.size)

    # Step 1: shift so the max value is 0
    exp_x = np.exp(x - x_max)

    # Step 2: normalize
    return exp_x / np.sum(exp_x)


def softmax_rows(matrix):
    """
    Apply softmax independently to each row of a matrix.

    Args:
        matrix: 2D array of shape (rows, cols)

    Returns:
        New array of the same shape where every row sums to 1
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError(f"softmax_rows expects a 2D matrix, got shape {matrix.shape}")
    return np.stack([softmax(row) for row in matrix]) if len(matrix) else matrix.copy()


# =============================================================================
# DEMO
# =============================================================================

if __name__ == "__main__":
    print("Testing softmax...")
    x = np.array([1.0, 2.0, 3.0])
    y = softmax(x)
    print(f"  Input:  {x}")
    print(f"  Output: {y}")
    print(f"  Sum: {y.sum()}")
    print(f"  Shift invariant: {np.allclose(y, softmax(x + 100.0))}")

    print("\nTesting softmax_rows...")
    m = np.array([[1, 2, 3], [1, 1, 1], [0, -1e9, -1e9]], dtype=np.float64)
    print(f"  Output:\n{softmax_rows(m)}")
