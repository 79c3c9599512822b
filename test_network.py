"""
Test the network graph and the link-weight projector
"""
import numpy as np
import pytest

from inspector.activations import softmax
from inspector.attention import mask_and_scale
from inspector.network import (
    build_network,
    for_each_node,
    get_output_node,
    parse_node_id,
)
from inspector.projector import (
    AggregateMode,
    NodeDataError,
    head_weights,
    link_weights,
    node_matrix,
    update_weights,
)
from inspector.transformer import TransformerBlock, TransformerConfig, WeightFrame
from utils.data import placeholder_frame


# ============================================================
# Graph construction
# ============================================================

def test_build_network_layer_sizes_and_links():
    network = build_network([2, 3], ["a", "b"])

    assert network.shape() == [2, 2, 3]
    for layer_idx in range(1, len(network.layers)):
        previous = len(network.layers[layer_idx - 1])
        for node in network.layer(layer_idx):
            assert len(node.input_links) == previous

    pairs = [(l.source, l.dest) for l in network.links]
    assert len(pairs) == len(set(pairs))
    ids = [l.id for l in network.links]
    assert len(ids) == len(set(ids))


def test_build_network_ids_and_order():
    network = build_network([2, 3], ["a", "b"])

    assert [n.id for n in network.layer(0)] == ["0", "1"]
    assert [n.label for n in network.layer(0)] == ["a", "b"]
    assert [n.id for n in network.layer(1)] == ["0_0", "0_1"]
    assert [n.id for n in network.layer(2)] == ["1_0", "1_1", "1_2"]

    node = network.node_by_id("1_2")
    sources = [network.nodes[l.source].id for l in network.input_links(node)]
    assert sources == ["0_0", "0_1"]
    assert all(l.weight == 0 and not l.dead for l in network.links)
    assert network.links[0].id == "0-0_0"


def test_build_network_with_labels_as_ids():
    network = build_network([1], ["x", "y"], use_labels=True)
    assert [n.id for n in network.layer(0)] == ["x", "y"]
    assert network.links[1].id == "y-0_0"


def test_build_network_caps_heads():
    network = build_network([7, 2], ["a"], max_heads=5)
    assert network.shape() == [1, 5, 2]


def test_build_network_without_blocks():
    network = build_network([], ["a", "b", "c"])
    assert network.shape() == [3]
    assert network.links == []


def test_output_links_mirror_input_links():
    network = build_network([2], ["a", "b", "c"])
    for node in network.layer(0):
        assert len(node.outputs) == 2
        for idx in node.outputs:
            assert network.links[idx].source == node.index


def test_for_each_node_and_output_node():
    network = build_network([2, 1], ["a", "b"])
    seen = []
    for_each_node(network, True, lambda n: seen.append(n.id))
    assert seen == ["0_0", "0_1", "1_0"]
    assert get_output_node(network).id == "1_0"


def test_to_dict_is_plain_data():
    data = build_network([1], ["a"]).to_dict()
    assert data["layers"] == [["0"], ["0_0"]]
    assert data["links"] == [{"source": 0, "dest": 1, "weight": 0.0, "dead": False}]


# ============================================================
# Node ids
# ============================================================

@pytest.mark.parametrize("block,head", [(0, 0), (1, 3), (12, 7)])
def test_parse_node_id_round_trip(block, head):
    assert parse_node_id(f"{block}_{head}") == (block, head, None)
    assert parse_node_id(f"{block}_{head}_1") == (block, head, 1)
    assert parse_node_id(f"{block}_{head}_0").is_output == 0


def test_parse_node_id_none():
    ref = parse_node_id(None)
    assert ref[:2] == (None, None)
    assert ref.is_output is None


def test_parse_node_id_input_node():
    assert parse_node_id("4") == (4, None, None)


# ============================================================
# Projection
# ============================================================

HEADS = [
    np.array([[1.0, 0.0, 0.0], [2.0, 1.0, 0.0], [0.0, 3.0, 1.0]]),
    np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 1.0], [4.0, 0.0, 2.0]]),
]


def test_selected_token_uses_its_row():
    network = build_network([2], ["a", "b", "c"])
    update_weights(network, HEADS, selected_token_id="1")

    for head, node in enumerate(network.layer(1)):
        got = [l.weight for l in network.input_links(node)]
        np.testing.assert_allclose(got, softmax(HEADS[head][1]))


def test_token_zero_counts_as_selected():
    weights = head_weights(HEADS[0], selected_token_id=0)
    np.testing.assert_allclose(weights, softmax(HEADS[0][0]))


def test_aggregate_modes():
    cols = HEADS[0].sum(axis=0)
    np.testing.assert_allclose(head_weights(HEADS[0]), softmax(cols))
    np.testing.assert_allclose(head_weights(HEADS[0], mode=AggregateMode.COLUMN_MAX),
                               cols / cols.max())
    np.testing.assert_allclose(head_weights(HEADS[0], mode="last_row"), softmax(HEADS[0][-1]))


def test_column_max_of_all_zero_attention_is_zero():
    config = TransformerConfig(n_ctx=2, d_embed=2, d_head=2, n_heads=1, n_blocks=1, n_vocab=2)
    attention = placeholder_frame(config).blocks[0].attention[0]

    weights = head_weights(attention, mode=AggregateMode.COLUMN_MAX)

    np.testing.assert_array_equal(weights, [0.0, 0.0])


def test_column_max_keeps_the_sign_of_negative_columns():
    weights = head_weights([[-1.0, -4.0], [-1.0, 0.0]], mode=AggregateMode.COLUMN_MAX)
    np.testing.assert_allclose(weights, [-0.5, -1.0])


def test_aggregate_weights_sum_to_one():
    network = build_network([2], ["a", "b", "c"])
    update_weights(network, HEADS)
    for node in network.layer(1):
        assert sum(l.weight for l in network.input_links(node)) == pytest.approx(1.0)


def test_inspected_block_filters_other_blocks():
    network = build_network([2, 2], ["a", "b", "c"])
    weights = link_weights(network, HEADS, inspected_node_id="1_0_0")

    for node in network.layer(1):
        assert all(weights[i] == 0.0 for i in node.input_links)
    for node in network.layer(2):
        assert any(weights[i] > 0.0 for i in node.input_links)


def test_inspecting_an_input_node_filters_nothing():
    network = build_network([1, 1], ["a", "b"])
    heads = [np.array([[1.0, 0.0], [2.0, 1.0]])]

    weights = link_weights(network, heads, inspected_node_id="1")

    assert weights == link_weights(network, heads)
    assert any(w > 0.0 for w in weights)


def test_link_weights_is_pure():
    network = build_network([2], ["a", "b", "c"])
    link_weights(network, HEADS, selected_token_id=2)
    assert all(l.weight == 0.0 for l in network.links)


def test_missing_head_matrix_is_an_error():
    network = build_network([3], ["a", "b", "c"])
    with pytest.raises(NodeDataError, match="head 2"):
        update_weights(network, HEADS)


def test_selected_token_outside_matrix():
    with pytest.raises(NodeDataError):
        head_weights(HEADS[0], selected_token_id=5)


# ============================================================
# Node matrices
# ============================================================

def make_frame():
    qk = [np.array([[1.0, 2.0], [3.0, 4.0]]), np.eye(2)]
    ov = [np.full((2, 2), 2.0), np.eye(2)]
    attention = [np.full((3, 3), 0.25), np.eye(3)]
    output = [np.ones((3, 3)), np.zeros((3, 3))]
    return WeightFrame(
        epoch=0, loss_train=1.0, loss_test=1.0, accuracy_test=0.0,
        embedding=np.arange(6, dtype=float).reshape(3, 2),
        unembedding=np.ones((2, 3)),
        pos_embed=np.zeros((2, 2)),
        blocks=[TransformerBlock(qk=qk, ov=ov, attention=attention, output=output)],
    )


def test_node_matrix_input_node():
    frame = make_frame()
    np.testing.assert_array_equal(node_matrix(frame, "1", [2, 0]), [[0.0, 1.0]])


def test_node_matrix_heads():
    frame = make_frame()
    np.testing.assert_array_equal(node_matrix(frame, "0_0_0", []), frame.blocks[0].attention[0])
    np.testing.assert_array_equal(node_matrix(frame, "0_1_1", []), frame.blocks[0].output[1])
    np.testing.assert_array_equal(node_matrix(frame, "0_0_1", [], use_context=True),
                                  frame.blocks[0].ov[0])
    np.testing.assert_array_equal(node_matrix(frame, "0_0_0", [], use_context=True),
                                  mask_and_scale(frame.blocks[0].qk[0], 1))


def test_node_matrix_missing_data_fails_visibly():
    frame = make_frame()
    with pytest.raises(NodeDataError):
        node_matrix(frame, "0_2_0", [])
    with pytest.raises(NodeDataError):
        node_matrix(frame, "1_0_0", [])
    with pytest.raises(NodeDataError):
        node_matrix(frame, "5", [0, 1])
    with pytest.raises(NodeDataError):
        node_matrix(frame, None, [])
