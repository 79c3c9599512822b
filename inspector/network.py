"""
Network Graph of a Transformer

A layered picture of the model used by the drawing code:
- Layer 0: one node per input token
- Layer b + 1: one node per attention head of block b

Every node is fully connected to the previous layer. The links carry a
display weight only (see projector.py); the forward pass never reads them.

The graph is stored as an arena: nodes live in one list and are referred
to by integer index, links are (source, dest, weight) records in a flat
list. Nothing points back at anything, so a network can be copied or
dumped to plain dicts freely.
"""

from collections import namedtuple


NodeRef = namedtuple("NodeRef", ["block", "head", "is_output"])


class Node:
    """A node of the network graph."""

    def __init__(self, index, node_id, layer, label=None):
        self.index = index
        self.id = node_id
        self.layer = layer
        self.label = node_id if label is None else label

        # Link indices, in insertion order
        self.input_links = []
        self.outputs = []

    def __repr__(self):
        return f"Node({self.id!r}, layer={self.layer})"


class Link:
    """A directed link between two node indices."""

    def __init__(self, source, dest, link_id, weight=0.0):
        self.source = source
        self.dest = dest
        self.id = link_id
        self.weight = weight

        # Reserved for pruning visualizations
        self.dead = False

    def __repr__(self):
        return f"Link({self.id!r}, weight={self.weight:.3f})"


class Network:
    """
    Arena of nodes and links.

    layers[i] lists the node indices of layer i in insertion order; code
    that addresses links by position relies on that order.
    """

    def __init__(self):
        self.nodes = []
        self.links = []
        self.layers = []

    def add_node(self, node_id, layer, label=None):
        node = Node(len(self.nodes), node_id, layer, label)
        self.nodes.append(node)
        while len(self.layers) <= layer:
            self.layers.append([])
        self.layers[layer].append(node.index)
        return node

    def connect(self, source, dest, weight=0.0):
        """Add a link from node index `source` to node index `dest`."""
        link_id = f"{self.nodes[source].id}-{self.nodes[dest].id}"
        link = Link(source, dest, link_id, weight)
        index = len(self.links)
        self.links.append(link)
        self.nodes[source].outputs.append(index)
        self.nodes[dest].input_links.append(index)
        return link

    def layer(self, idx):
        """Nodes of one layer."""
        return [self.nodes[i] for i in self.layers[idx]]

    def input_links(self, node):
        return [self.links[i] for i in node.input_links]

    def node_by_id(self, node_id):
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(f"no node with id {node_id!r}")

    def shape(self):
        return [len(layer) for layer in self.layers]

    def to_dict(self):
        return {
            "layers": [[self.nodes[i].id for i in layer] for layer in self.layers],
            "nodes": [
                {"id": n.id, "label": n.label, "layer": n.layer} for n in self.nodes
            ],
            "links": [
                {"source": l.source, "dest": l.dest, "weight": l.weight, "dead": l.dead}
                for l in self.links
            ],
        }


def build_network(heads_per_block, input_tokens, max_heads=None, use_labels=False):
    """
    Build the layered graph of a transformer.

    Args:
        heads_per_block: Number of heads in each block, e.g. [2, 3]
        input_tokens: Display label of each input node
        max_heads: Optional cap on the heads drawn per block
        use_labels: Use the token labels as input node ids instead of
                    their stringified positions

    Returns:
        Network

    Example:
        build_network([2, 3], ["a", "b"]) has layers of size [2, 2, 3]
        with input ids "0", "1" and head ids "0_0", "0_1", "1_0", "1_1", "1_2".
    """
    network = Network()
    # The input layer exists even when there are no tokens
    network.layers.append([])

    for i, token in enumerate(input_tokens):
        node_id = str(token) if use_labels else str(i)
        network.add_node(node_id, 0, label=str(token))

    for b, num_heads in enumerate(heads_per_block):
        if max_heads is not None:
            num_heads = min(num_heads, max_heads)
        layer_idx = b + 1
        network.layers.append([])
        previous = list(network.layers[layer_idx - 1])
        for h in range(num_heads):
            node = network.add_node(f"{b}_{h}", layer_idx)
            # Links from every node of the previous layer
            for source in previous:
                network.connect(source, node.index)

    return network


def for_each_node(network, ignore_inputs, accessor):
    """Call accessor(node) for every node, optionally skipping layer 0."""
    start = 1 if ignore_inputs else 0
    for layer in network.layers[start:]:
        for idx in layer:
            accessor(network.nodes[idx])


def get_output_node(network):
    """First node of the last layer."""
    return network.nodes[network.layers[-1][0]]


def parse_node_id(node_id):
    """
    Split a node id into block, head and side.

    "{block}_{head}"        -> NodeRef(block, head, None)
    "{block}_{head}_{0|1}"  -> NodeRef(block, head, 0 or 1); 0 is the
                               attention (qk) side, 1 the output (ov) side
    "{index}"               -> NodeRef(index, None, None), an input node
    None                    -> NodeRef(None, None, None)
    """
    if node_id is None:
        return NodeRef(None, None, None)

    parts = [int(p) for p in str(node_id).split("_")]
    if len(parts) > 3:
        raise ValueError(f"malformed node id {node_id!r}")
    parts += [None] * (3 - len(parts))
    return NodeRef(*parts)
