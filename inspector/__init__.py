# Forward-pass reconstruction and network graph for inspecting logged transformer checkpoints
# Everything here is pure: inputs come in as arguments, results go out as new values

from .matrix import ShapeMismatchError, add, multiply, transpose, clone, argmax
from .activations import softmax, softmax_rows
from .attention import MASK_VALUE, mask_and_scale, attention_pattern, head_output
from .transformer import TransformerConfig, TransformerBlock, WeightFrame, ResidualTrace, forward
from .network import Network, build_network, parse_node_id
from .projector import AggregateMode, NodeDataError, link_weights, update_weights, node_matrix
