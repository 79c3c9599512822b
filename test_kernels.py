"""
Test matrix primitives, softmax and causal masking
"""
import numpy as np
import pytest

from inspector.activations import softmax, softmax_rows
from inspector.attention import (
    MASK_VALUE,
    attention_pattern,
    head_output,
    mask_and_scale,
)
from inspector.matrix import (
    ShapeMismatchError,
    add,
    argmax,
    as_matrix,
    clone,
    multiply,
    stack_rows,
    transpose,
)


# ============================================================
# Matrix primitives
# ============================================================

def test_add_and_multiply():
    a = as_matrix([[1, 2], [3, 4]])
    b = as_matrix([[0, 1], [1, 0]])
    np.testing.assert_array_equal(add(a, b), [[1, 3], [4, 4]])
    np.testing.assert_array_equal(multiply(a, b), [[2, 1], [4, 3]])


def test_add_rejects_broadcasting():
    with pytest.raises(ShapeMismatchError):
        add(np.ones((2, 2)), np.ones((1, 2)))


def test_multiply_checks_inner_dimension():
    with pytest.raises(ShapeMismatchError, match="3 columns vs 2 rows"):
        multiply(np.ones((2, 3)), np.ones((2, 2)))


def test_operations_do_not_mutate_inputs():
    a = as_matrix([[1, 2], [3, 4]])
    original = a.copy()
    t = transpose(a)
    c = clone(a)
    t[0, 0] = 99
    c[1, 1] = 99
    add(a, a)
    multiply(a, a)
    np.testing.assert_array_equal(a, original)


def test_as_matrix_requires_2d():
    with pytest.raises(ShapeMismatchError):
        as_matrix([1, 2, 3])


def test_stack_rows_gathers_in_order():
    embedding = as_matrix([[1, 0], [0, 1], [5, 5]])
    np.testing.assert_array_equal(stack_rows(embedding, [2, 0, 0]), [[5, 5], [1, 0], [1, 0]])
    with pytest.raises(IndexError):
        stack_rows(embedding, [3])


def test_argmax_breaks_ties_by_lowest_index():
    assert argmax([0.5, 0.5, 0.1]) == 0
    assert argmax([0.1, 0.7, 0.7]) == 1
    with pytest.raises(ValueError):
        argmax([])


# ============================================================
# Softmax
# ============================================================

@pytest.mark.parametrize("row", [
    [1.0, 2.0, 3.0],
    [0.0],
    [-5.0, 100.0, 3.5, 0.0],
    [1e3, 1e3 + 1, -1e3],
])
def test_softmax_is_a_distribution(row):
    probs = softmax(row)
    assert probs.sum() == pytest.approx(1.0)
    assert np.all(probs >= 0) and np.all(probs <= 1)


def test_softmax_entries_positive_for_moderate_rows():
    probs = softmax([-3.0, 0.0, 2.5, 1.0])
    assert np.all(probs > 0)


def test_softmax_single_entry():
    np.testing.assert_array_equal(softmax([42.0]), [1.0])


def test_softmax_shift_invariance():
    row = np.array([0.3, -1.2, 2.0, 0.0])
    for c in (-50.0, 1.0, 700.0):
        np.testing.assert_allclose(softmax(row + c), softmax(row))


def test_softmax_large_values_do_not_overflow():
    probs = softmax([1000.0, 1000.0])
    np.testing.assert_allclose(probs, [0.5, 0.5])


def test_softmax_empty_row_is_an_error():
    with pytest.raises(ValueError):
        softmax([])


def test_softmax_fully_masked_row_is_uniform():
    np.testing.assert_allclose(softmax([-np.inf, -np.inf]), [0.5, 0.5])
    np.testing.assert_allclose(softmax([MASK_VALUE] * 4), [0.25] * 4)


def test_softmax_rows():
    probs = softmax_rows([[1, 2, 3], [0, MASK_VALUE, MASK_VALUE]])
    np.testing.assert_allclose(probs.sum(axis=1), [1.0, 1.0])
    np.testing.assert_allclose(probs[1], [1.0, 0.0, 0.0])


# ============================================================
# Causal masking
# ============================================================

def test_mask_and_scale_example():
    masked = mask_and_scale([[1, 2], [3, 4]], 2)
    np.testing.assert_array_equal(masked, [[0.5, -1e9], [1.5, 2.0]])


def test_mask_and_scale_rule_holds_everywhere():
    rng = np.random.default_rng(0)
    m = rng.normal(size=(5, 5))
    masked = mask_and_scale(m, 3.0)
    for i in range(5):
        for j in range(5):
            if i >= j:
                assert masked[i, j] == pytest.approx(m[i, j] / 3.0)
            else:
                assert masked[i, j] == -1e9


def test_mask_and_scale_with_negative_infinity():
    a = softmax_rows(mask_and_scale([[1, 2], [3, 4]], 2))
    b = softmax_rows(mask_and_scale([[1, 2], [3, 4]], 2, mask_value=-np.inf))
    np.testing.assert_allclose(a, b)


def test_attention_pattern_is_causal():
    rng = np.random.default_rng(1)
    resid = rng.normal(size=(4, 3))
    pattern = attention_pattern(resid, rng.normal(size=(3, 3)), scale=np.sqrt(3))
    np.testing.assert_allclose(pattern.sum(axis=1), np.ones(4))
    assert np.all(pattern[np.triu_indices(4, k=1)] < 1e-12)
    assert pattern[0, 0] == pytest.approx(1.0)


def test_zero_ov_head_contributes_nothing():
    resid = np.eye(3)
    pattern = attention_pattern(resid, np.zeros((3, 3)))
    np.testing.assert_array_equal(head_output(pattern, resid, np.zeros((3, 3))), np.zeros((3, 3)))
