"""
Configuration for the checkpoint inspector.

Model hyperparameters are not set here: they come from each experiment's
config file. These are the viewer's own defaults.
"""

CONFIG = {
    # ==========================================================================
    # EXPERIMENT SELECTION
    # ==========================================================================

    # Directory holding contents.json, tag_glossary.json and the
    # {experiment}__{tag}__config.json / __frames.json pairs
    "data_dir": "data",

    # Experiment and tag opened on start-up
    "experiment": "parity",
    "tag": "de@3_nh@1",

    # Parameter table shown first ("model", "data" or "train")
    "tab": "model",

    # ==========================================================================
    # NETWORK GRAPH
    # ==========================================================================

    # Vocabulary entries shown as input nodes when no context is used
    "max_vocab": 10,

    # Vocabulary entries offered for building a context
    "max_tokens": 30,

    # Heads drawn per block; extra heads are left out of the graph
    "max_heads": 5,

    # Head inspected before the user picks one: block 0, head 0, attention side
    "inspected_node": "0_0_0",

    # Summary used for link weights when no token is selected:
    # "column_softmax", "column_max" or "last_row"
    "aggregate_mode": "column_softmax",

    # ==========================================================================
    # FORWARD PASS
    # ==========================================================================

    # Logit written into future positions before softmax
    # float("-inf") gives the same probabilities
    "mask_value": -1e9,

    # Divide attention logits by sqrt(d_head)
    "scale_by_d_head": True,

    # Let each block read the residual left by the previous block instead
    # of the embedding-plus-position stream
    "compose_blocks": False,

    # ==========================================================================
    # PLAYER
    # ==========================================================================

    # Seconds between frames while playing
    "tick_interval": 0.05,

    # ==========================================================================
    # DEMO EXPERIMENT
    # ==========================================================================

    # Used by main.py when no data directory is available
    "demo_seed": 42,
    "demo_frames": 20,
}
