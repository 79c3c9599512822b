"""
Matrix Primitives

Thin helpers over dense 2D numpy arrays used by the forward pass:
- add, multiply, transpose, clone
- stack_rows: embedding lookup (one row per token)
- argmax: deterministic index of the largest entry

Every helper has value semantics: inputs are never modified and the result
owns its storage. Shapes are checked up front and there is no broadcasting,
so a frame whose dimensions disagree with its config fails loudly instead
of producing wrong numbers.
"""

import numpy as np


class ShapeMismatchError(ValueError):
    """Raised when two matrices cannot be combined."""


def as_matrix(data, name="matrix"):
    """
    Convert nested lists (or an array) into a 2D float64 array.

    Args:
        data: Nested sequence of numbers, shape (rows, cols)
        name: Label used in error messages

    Returns:
        New float64 array of shape (rows, cols)
    """
    matrix = np.array(data, dtype=np.float64)
    if matrix.ndim != 2:
        raise ShapeMismatchError(
            f"{name} must be 2-dimensional, got shape {matrix.shape}"
        )
    return matrix


def add(a, b):
    """Elementwise sum. Shapes must match exactly."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ShapeMismatchError(f"cannot add {a.shape} and {b.shape}")
    return a + b


def multiply(a, b):
    """
    Standard matrix product a @ b.

    Args:
        a: Matrix of shape (n, k)
        b: Matrix of shape (k, m)

    Returns:
        New matrix of shape (n, m)
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.ndim != 2 or b.ndim != 2:
        raise ShapeMismatchError(
            f"multiply expects 2D matrices, got {a.shape} and {b.shape}"
        )
    if a.shape[1] != b.shape[0]:
        raise ShapeMismatchError(
            f"cannot multiply {a.shape} by {b.shape}: "
            f"{a.shape[1]} columns vs {b.shape[0]} rows"
        )
    return a @ b


def transpose(a):
    """Transposed copy of a 2D matrix."""
    a = np.asarray(a, dtype=np.float64)
    if a.ndim != 2:
        raise ShapeMismatchError(f"transpose expects a 2D matrix, got {a.shape}")
    return a.T.copy()


def clone(a):
    return np.array(a, dtype=np.float64, copy=True)


def stack_rows(matrix, indices):
    """
    Gather rows of a matrix in the given order.

    This is the embedding lookup: with an embedding matrix of shape
    (n_vocab, d_embed) and a context of token indices, the result is the
    (len(indices), d_embed) matrix of their embedding vectors.

    Raises:
        IndexError: if an index falls outside [0, rows)
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    rows = matrix.shape[0]
    for idx in indices:
        if not 0 <= idx < rows:
            raise IndexError(f"row index {idx} out of range [0, {rows})")
    return matrix[list(indices)].copy()


def argmax(row):
    """Index of the largest entry; ties go to the lowest index."""
    row = np.asarray(row, dtype=np.float64)
    if row.size == 0:
        raise ValueError("argmax of an empty row is undefined")
    # np.argmax returns the first occurrence of the maximum
    return int(np.argmax(row))


# =============================================================================
# DEMO
# =============================================================================

if __name__ == "__main__":
    a = as_matrix([[1, 2], [3, 4]])
    b = as_matrix([[0, 1], [1, 0]])
    print(f"a + b:\n{add(a, b)}")
    print(f"a @ b:\n{multiply(a, b)}")
    print(f"a^T:\n{transpose(a)}")
    print(f"rows [1, 0] of a:\n{stack_rows(a, [1, 0])}")
    print(f"argmax([0.5, 0.5, 0.1]) = {argmax([0.5, 0.5, 0.1])}")

    try:
        multiply(a, as_matrix([[1, 2, 3]]))
    except ShapeMismatchError as e:
        print(f"Shape check: {e}")
