"""
Attention from Logged QK / OV Circuits

This module recomputes one attention head from the weights logged in a
checkpoint, rather than from separate W_q, W_k, W_v, W_o projections:

- QK circuit: a single bilinear form, scores = X @ QK^T @ X^T
- OV circuit: a single linear map applied to the attended residual

With X the residual stream of shape (n_ctx, d_embed):

    scores  = X @ QK^T @ X^T                 (n_ctx, n_ctx)
    scores  = mask_and_scale(scores, sqrt(d_head))
    pattern = softmax(scores) row by row     (n_ctx, n_ctx)
    output  = (pattern^T @ X) @ OV^T         (n_ctx, d_embed)

Causal mask:
    Position i may only attend to positions j <= i. Instead of dropping the
    disallowed entries we overwrite them with a very negative logit, which
    keeps every row the same length and sends those entries to ~0 after
    softmax.
"""

import numpy as np

from .activations import softmax_rows
from .matrix import multiply, transpose


# Logit written into masked (future) positions
MASK_VALUE = -1e9


def mask_and_scale(attn, scale, mask_value=MASK_VALUE):
    """
    Causally mask and scale an attention score matrix.

    For entry (i, j):
        i >= j  ->  attn[i, j] / scale
        i <  j  ->  mask_value

    Args:
        attn: Score matrix of shape (rows, cols)
        scale: Divisor for the allowed entries (sqrt(d_head) in the forward pass)
        mask_value: Logit for masked entries. -1e9 by default; -np.inf gives
                    the same probabilities after softmax.

    Returns:
        New matrix of the same shape

    Example:
        mask_and_scale([[1, 2], [3, 4]], 2) -> [[0.5, -1e9], [1.5, 2.0]]
    """
    attn = np.asarray(attn, dtype=np.float64)
    if attn.ndim != 2:
        raise ValueError(f"mask_and_scale expects a 2D matrix, got shape {attn.shape}")

    rows, cols = attn.shape
    # allowed[i, j] is True where i >= j
    allowed = np.arange(rows)[:, None] >= np.arange(cols)[None, :]
    return np.where(allowed, attn / scale, mask_value)


def attention_scores(resid, qk):
    """
    Bilinear attention scores of one head: resid @ qk^T @ resid^T.

    Args:
        resid: Residual stream, shape (n_ctx, d_embed)
        qk: Query-key matrix of the head, shape (d_embed, d_embed)

    Returns:
        Raw scores, shape (n_ctx, n_ctx)
    """
    return multiply(multiply(resid, transpose(qk)), transpose(resid))


def attention_pattern(resid, qk, scale=1.0, mask_value=MASK_VALUE):
    """
    Attention probabilities of one head.

    Args:
        resid: Residual stream, shape (n_ctx, d_embed)
        qk: Query-key matrix, shape (d_embed, d_embed)
        scale: Temperature; the forward pass uses sqrt(d_head)
        mask_value: Logit for future positions

    Returns:
        Pattern of shape (n_ctx, n_ctx); pattern[i, j] is how much
        position i attends to position j, each row sums to 1
    """
    # =====================================================================
    # Step 1: Score every (query, key) pair through the QK circuit
    # =====================================================================
    scores = attention_scores(resid, qk)

    # =====================================================================
    # Step 2: Causal mask + temperature
    # =====================================================================
    scores = mask_and_scale(scores, scale, mask_value)

    # =====================================================================
    # Step 3: Each query row becomes a distribution over keys
    # =====================================================================
    return softmax_rows(scores)


def head_output(pattern, resid, ov):
    """
    Contribution of one head to the residual stream.

    Args:
        pattern: Attention probabilities, shape (n_ctx, n_ctx)
        resid: Residual stream, shape (n_ctx, d_embed)
        ov: Output-value matrix, shape (d_embed, d_embed)

    Returns:
        (pattern^T @ resid) @ ov^T, shape (n_ctx, d_embed)
    """
    # Weighted aggregation of residual vectors by attention
    mixed = multiply(transpose(pattern), resid)

    # Projection through the OV circuit
    return multiply(mixed, transpose(ov))


# =============================================================================
# DEMO
# =============================================================================

if __name__ == "__main__":
    print("Testing mask_and_scale...")
    print(mask_and_scale([[1, 2], [3, 4]], 2))

    print("\nTesting attention_pattern...")
    np.random.seed(42)
    resid = np.random.randn(4, 3)
    qk = np.random.randn(3, 3)
    ov = np.random.randn(3, 3)
    pattern = attention_pattern(resid, qk, scale=np.sqrt(3))
    print(f"  Pattern:\n{pattern}")
    print(f"  Row sums (should be 1): {pattern.sum(axis=-1)}")
    print(f"  Head output shape: {head_output(pattern, resid, ov).shape}")
