"""
Data Utilities for the Checkpoint Inspector

This module handles:
- Reading the experiment index, tag glossary and per-experiment metadata
- Loading a config/frames pair and validating every frame against the config
- Readable names for tags and config parameters
- An explicit zero-filled placeholder frame
- A seeded synthetic experiment for running without logged data

Files in a data directory:

    contents.json                       ["parity", ...]
    tag_glossary.json                   {"de": "d_embed", "nh": "n_heads", ...}
    parity.json                         {"name": ..., "tags": [...], "notes": ...}
    parity__de@3_nh@1__config.json      TransformerConfig fields + extras
    parity__de@3_nh@1__frames.json      [frame, frame, ...]
"""

import json
import logging
import os

import numpy as np

from inspector.activations import softmax_rows
from inspector.transformer import TransformerBlock, TransformerConfig, WeightFrame

logger = logging.getLogger(__name__)


# =============================================================================
# FILE LOADING
# =============================================================================

def load_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_contents(data_dir):
    """Names of all experiments listed in contents.json."""
    return list(load_json(os.path.join(data_dir, "contents.json")))


def load_experiments(data_dir):
    """
    Load the metadata of every listed experiment.

    An experiment whose file is missing or malformed is logged and
    skipped; the others still load.

    Returns:
        Dict mapping experiment name -> {"name", "tags", "notes"}
    """
    experiments = {}
    for name in load_contents(data_dir):
        path = os.path.join(data_dir, f"{name}.json")
        try:
            experiments[name] = load_json(path)
        except (OSError, ValueError) as e:
            logger.warning("Couldn't load %s.json: %s", name, e)
    logger.info("Loaded %d experiments from %s", len(experiments), data_dir)
    return experiments


def load_tag_glossary(data_dir):
    return load_json(os.path.join(data_dir, "tag_glossary.json"))


def experiment_paths(data_dir, experiment, tag):
    """(config path, frames path) of one experiment/tag pair."""
    stem = os.path.join(data_dir, f"{experiment}__{tag}")
    return f"{stem}__config.json", f"{stem}__frames.json"


def load_config(path):
    return TransformerConfig.from_dict(load_json(path))


def load_frames(path, config):
    """
    Load and validate every frame of a frames file.

    Raises:
        ShapeMismatchError: if any frame disagrees with the config
    """
    frames = [WeightFrame.from_dict(data).validate(config) for data in load_json(path)]
    if not frames:
        raise ValueError(f"{path} contains no frames")
    return frames


def load_experiment(data_dir, experiment, tag):
    """
    Load a config and its frames together.

    Nothing is returned unless both files load and every frame matches
    the config, so callers can swap the pair in as a unit.

    Returns:
        (TransformerConfig, list of WeightFrame)
    """
    config_path, frames_path = experiment_paths(data_dir, experiment, tag)
    logger.info("Loading experiment/tag: %s %s", experiment, tag)
    config = load_config(config_path)
    frames = load_frames(frames_path, config)
    logger.info("Loaded %d frames (epochs %d..%d)",
                len(frames), frames[0].epoch, frames[-1].epoch)
    return config, frames


def frame_to_dict(frame):
    """Inverse of WeightFrame.from_dict, for writing frames files."""
    def heads(matrices):
        return [m.tolist() for m in matrices]

    return {
        "epoch": frame.epoch,
        "lossTrain": frame.loss_train,
        "lossTest": frame.loss_test,
        "accuracyTest": frame.accuracy_test,
        "embedding": frame.embedding.tolist(),
        "unembedding": frame.unembedding.tolist(),
        "pos_embed": frame.pos_embed.tolist(),
        "blocks": [
            {
                "qk": heads(block.qk),
                "ov": heads(block.ov),
                "attention": heads(block.attention),
                "output": heads(block.output),
                "mlp": None if block.mlp is None else block.mlp.tolist(),
            }
            for block in frame.blocks
        ],
    }


def save_experiment(data_dir, experiment, tag, config, frames, notes=""):
    """Write a config/frames pair plus the index files that list it."""
    os.makedirs(data_dir, exist_ok=True)
    config_path, frames_path = experiment_paths(data_dir, experiment, tag)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f)
    with open(frames_path, "w", encoding="utf-8") as f:
        json.dump([frame_to_dict(frame) for frame in frames], f)

    meta_path = os.path.join(data_dir, f"{experiment}.json")
    meta = load_json(meta_path) if os.path.exists(meta_path) else {
        "name": title_case(experiment), "tags": [], "notes": notes,
    }
    if tag not in meta["tags"]:
        meta["tags"].append(tag)
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(meta, f)

    contents_path = os.path.join(data_dir, "contents.json")
    contents = load_json(contents_path) if os.path.exists(contents_path) else []
    if experiment not in contents:
        contents.append(experiment)
    with open(contents_path, "w", encoding="utf-8") as f:
        json.dump(contents, f)


# =============================================================================
# DISPLAY NAMES
# =============================================================================

# Config keys shown on each parameter tab
PARAM_KEYS = {
    "data": ["operation", "seed", "training_fraction", "value_range", "dist_style",
             "value_count", "use_operators"],
    "model": ["d_embed", "d_head", "d_mlp", "n_ctx", "n_heads", "n_blocks", "use_position"],
    "train": ["learning_rate", "weight_decay", "n_epochs"],
}


def parse_tag(tag, glossary):
    """
    Expand an abbreviated tag using the glossary.

    Example:
        parse_tag("de@3_nh@1", {"de": "d_embed", "nh": "n_heads"})
        -> "d_embed=3, n_heads=1"
    """
    if tag == "default":
        return "Default"
    terms = []
    for pair in tag.split("_"):
        key, _, val = pair.partition("@")
        terms.append(f"{glossary.get(key, key)}={val}")
    return ", ".join(terms)


def title_case(name):
    """Snake case to title case: learning_rate -> Learning Rate."""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_"))


def experimental_params(config, tab):
    """
    Rows of the parameter table for one tab.

    Returns:
        List of (title, value) in config order
    """
    if tab not in PARAM_KEYS:
        raise ValueError(f"unknown tab {tab!r}")
    keys = PARAM_KEYS[tab]
    return [(title_case(k), v) for k, v in config.to_dict().items() if k in keys]


# =============================================================================
# PLACEHOLDER AND DEMO FRAMES
# =============================================================================

def placeholder_frame(config, epoch=0):
    """
    All-zero frame with the config's shapes.

    Used only where the caller explicitly opts into it (e.g. while the real
    frames are still loading); it is never substituted for missing data
    behind the caller's back.
    """
    c = config

    def zeros(rows, cols):
        return np.zeros((rows, cols))

    blocks = [
        TransformerBlock(
            qk=[zeros(c.d_embed, c.d_embed) for _ in range(c.n_heads)],
            ov=[zeros(c.d_embed, c.d_embed) for _ in range(c.n_heads)],
            attention=[zeros(c.n_vocab, c.n_vocab) for _ in range(c.n_heads)],
            output=[zeros(c.n_vocab, c.n_vocab) for _ in range(c.n_heads)],
        )
        for _ in range(c.n_blocks)
    ]
    return WeightFrame(
        epoch=epoch,
        loss_train=np.nan,
        loss_test=np.nan,
        accuracy_test=0.0,
        embedding=zeros(c.n_vocab, c.d_embed),
        unembedding=zeros(c.d_embed, c.n_vocab),
        pos_embed=zeros(c.n_ctx, c.d_embed),
        blocks=blocks,
    )


def create_demo_experiment(n_frames=20, seed=42, n_ctx=3, d_embed=4, n_heads=2,
                           n_blocks=1, vocabulary=("0", "1")):
    """
    Build a synthetic experiment: weights drift from random initial values
    towards random final values, and the losses decay, over n_frames
    checkpoints.

    The legacy attention/output matrices are derived from the circuits:
        attention = softmax(E @ QK^T @ E^T)   (n_vocab, n_vocab)
        output    = E @ OV^T @ U              (n_vocab, n_vocab)

    Returns:
        (TransformerConfig, list of WeightFrame)
    """
    rng = np.random.default_rng(seed)
    vocabulary = tuple(vocabulary)
    n_vocab = len(vocabulary)
    config = TransformerConfig(
        n_ctx=n_ctx,
        d_embed=d_embed,
        d_head=d_embed // n_heads or 1,
        n_heads=n_heads,
        n_blocks=n_blocks,
        n_vocab=n_vocab,
        vocabulary=vocabulary,
        extras={"operation": "demo", "seed": seed, "n_epochs": n_frames * 100},
    )

    def endpoints(*shape):
        return rng.normal(0, 0.1, shape), rng.normal(0, 1.0, shape)

    embedding = endpoints(n_vocab, d_embed)
    unembedding = endpoints(d_embed, n_vocab)
    pos_embed = endpoints(n_ctx, d_embed)
    qk = [[endpoints(d_embed, d_embed) for _ in range(n_heads)] for _ in range(n_blocks)]
    ov = [[endpoints(d_embed, d_embed) for _ in range(n_heads)] for _ in range(n_blocks)]

    frames = []
    for i in range(n_frames):
        t = i / max(1, n_frames - 1)

        def at(pair):
            start, end = pair
            return start + (end - start) * t

        E = at(embedding)
        U = at(unembedding)
        blocks = []
        for b in range(n_blocks):
            block_qk = [at(pair) for pair in qk[b]]
            block_ov = [at(pair) for pair in ov[b]]
            blocks.append(TransformerBlock(
                qk=block_qk,
                ov=block_ov,
                attention=[softmax_rows(E @ m.T @ E.T) for m in block_qk],
                output=[E @ m.T @ U for m in block_ov],
            ))

        frames.append(WeightFrame(
            epoch=i * 100,
            loss_train=float(np.log(n_vocab) * np.exp(-4 * t) + 1e-3),
            loss_test=float(np.log(n_vocab) * np.exp(-3 * t) + 1e-2),
            accuracy_test=float(min(1.0, 1 / n_vocab + t)),
            embedding=E,
            unembedding=U,
            pos_embed=at(pos_embed),
            blocks=blocks,
        ))

    return config, frames
