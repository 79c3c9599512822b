"""
Link-Weight Projector

Maps attention matrices onto the display weights of a Network's links.
The weights only drive stroke width and color; they never feed back into
the forward pass.

Two cases:
- A token is selected: each head's incoming links show that head's
  attention row for the token, softmax-normalized.
- Nothing is selected: the head matrix is aggregated over all query rows
  (see AggregateMode) and normalized.

When a specific head is being inspected, every block other than the
inspected one has its link weights zeroed so the inspected block stands out.
"""

from enum import Enum

import numpy as np

from .activations import softmax
from .attention import mask_and_scale
from .matrix import as_matrix
from .network import parse_node_id


class NodeDataError(LookupError):
    """A node asks for frame data that does not exist."""


class AggregateMode(Enum):
    """How a head matrix is summarized when no token is selected."""

    # Column sums (attention received by each position), then softmax
    COLUMN_SOFTMAX = "column_softmax"

    # Column sums divided by their largest magnitude; all-zero sums stay zero
    COLUMN_MAX = "column_max"

    # Softmax of the last query row
    LAST_ROW = "last_row"


def _token_row(selected_token_id):
    try:
        return int(selected_token_id)
    except (TypeError, ValueError):
        raise ValueError(f"selected token id {selected_token_id!r} is not a row index") from None


def head_weights(matrix, selected_token_id=None, mode=AggregateMode.COLUMN_SOFTMAX):
    """
    Display weights of one head over the input positions.

    Args:
        matrix: Head matrix, shape (rows, cols)
        selected_token_id: Row to show, or None to aggregate
        mode: AggregateMode used when no token is selected

    Returns:
        1D array of length cols
    """
    matrix = as_matrix(matrix, "head matrix")

    if selected_token_id is not None:
        row = _token_row(selected_token_id)
        if not 0 <= row < matrix.shape[0]:
            raise NodeDataError(
                f"token {row} has no row in a head matrix of shape {matrix.shape}"
            )
        return softmax(matrix[row])

    mode = AggregateMode(mode)
    if mode is AggregateMode.LAST_ROW:
        return softmax(matrix[-1])

    cols = matrix.sum(axis=0)
    if mode is AggregateMode.COLUMN_MAX:
        norm = np.max(np.abs(cols))
        if norm == 0:
            return np.zeros_like(cols)
        return cols / norm
    return softmax(cols)


def link_weights(network, head_matrices, selected_token_id=None, inspected_node_id=None,
                 mode=AggregateMode.COLUMN_SOFTMAX):
    """
    Compute display weights for every link without touching the network.

    Args:
        network: Network from build_network
        head_matrices: One matrix per head (block 0's matrices, shared by
                       every block layer)
        selected_token_id: Input position whose attention row to show
        inspected_node_id: Head id like "1_0_1"; blocks other than its
                           block get zero weights. Input ids filter nothing.
        mode: AggregateMode used when no token is selected

    Returns:
        List of floats, aligned with network.links

    Raises:
        NodeDataError: if a drawn head has no matrix
    """
    weights = [0.0] * len(network.links)
    inspected = parse_node_id(inspected_node_id)

    for layer_idx in range(1, len(network.layers)):
        block = layer_idx - 1
        for node in network.layer(layer_idx):
            head = parse_node_id(node.id).head
            if head >= len(head_matrices):
                raise NodeDataError(
                    f"node {node.id} needs head {head} but only "
                    f"{len(head_matrices)} head matrices were given"
                )
            values = head_weights(head_matrices[head], selected_token_id, mode)

            # Input ids carry no head, so they select no block
            if inspected.head is not None and inspected.block != block:
                values = np.zeros_like(values)

            # Links beyond the matrix width have nothing to show
            for j, link_idx in enumerate(node.input_links):
                weights[link_idx] = float(values[j]) if j < len(values) else 0.0

    return weights


def update_weights(network, head_matrices, selected_token_id=None, inspected_node_id=None,
                   mode=AggregateMode.COLUMN_SOFTMAX):
    """Write link_weights() into the network's links and return the network."""
    weights = link_weights(network, head_matrices, selected_token_id, inspected_node_id, mode)
    for link, weight in zip(network.links, weights):
        link.weight = weight
    return network


def node_matrix(frame, node_id, input_idxs, use_context=False):
    """
    Matrix shown on a node's heatmap.

    Input nodes ("3") show the embedding row of their token. Head nodes
    ("b_h_0" / "b_h_1") show, in context mode, the QK circuit (causally
    masked, unscaled) or the OV circuit; otherwise the logged attention or
    output pattern. A two-part id "b_h" shows the attention side.

    Raises:
        NodeDataError: if the block, head or input position does not exist
    """
    block_idx, head_idx, is_output = parse_node_id(node_id)
    if block_idx is None:
        raise NodeDataError("no node selected")

    if head_idx is None:
        if not 0 <= block_idx < len(input_idxs):
            raise NodeDataError(f"input node {node_id} outside {len(input_idxs)} inputs")
        return frame.embedding[[input_idxs[block_idx]]].copy()

    if use_context:
        key = "ov" if is_output else "qk"
    else:
        key = "output" if is_output else "attention"

    if not 0 <= block_idx < len(frame.blocks):
        raise NodeDataError(f"node {node_id}: frame has {len(frame.blocks)} blocks")
    matrices = getattr(frame.blocks[block_idx], key)
    if not 0 <= head_idx < len(matrices):
        raise NodeDataError(
            f"node {node_id}: block {block_idx} has {len(matrices)} {key} heads"
        )

    matrix = matrices[head_idx]
    if use_context and not is_output:
        matrix = mask_and_scale(matrix, 1)
    return matrix
