#!/usr/bin/env python3
"""
Transformer Checkpoint Inspector - Main Entry Point

Walks through one logged experiment the way the interactive viewer does:

1. Load a config and its frames (or build a synthetic demo experiment)
2. Show the experiment's parameters
3. Build the network graph (one node per input, one per attention head)
4. Recompute the forward pass for a context at the chosen frame
5. Project attention onto the graph's link weights
6. Show the matrix behind one node
7. Optionally play through every frame

Usage:
    python main.py                                  # demo experiment
    python main.py --data-dir data --experiment parity --tag de@3_nh@1 \\
                   --context 0,1,1 --token 2 --node 0_1_1
    python main.py --play
"""

import argparse
import logging
import os
import re

import numpy as np

from config import CONFIG
from inspector.network import build_network, parse_node_id
from inspector.projector import AggregateMode, node_matrix, update_weights
from inspector.transformer import forward
from player import Player
from state import AppState, forward_ready, reduce, step
from utils.data import (
    create_demo_experiment,
    experimental_params,
    load_experiment,
    load_experiments,
    load_tag_glossary,
    parse_tag,
)


def print_separator(title=""):
    """Print a visual separator."""
    print("\n" + "=" * 60)
    if title:
        print(f"  {title}")
        print("=" * 60)


def zero_pad(n, width=6):
    return str(n).zfill(width)


def add_commas(s):
    return re.sub(r"\B(?=(\d{3})+(?!\d))", ",", s)


def log_human_readable(loss):
    """Losses are shown on a log scale."""
    return f"{np.log(loss):.2f}" if loss > 0 else "nan"


def frame_summary(frame):
    return (f"Epoch {add_commas(zero_pad(frame.epoch))}  |  "
            f"log loss train {log_human_readable(frame.loss_train)}  "
            f"test {log_human_readable(frame.loss_test)}  |  "
            f"accuracy {frame.accuracy_test * 100:.0f}%")


def parse_args():
    parser = argparse.ArgumentParser(description="Inspect logged transformer checkpoints")
    parser.add_argument("--data-dir", default=CONFIG["data_dir"])
    parser.add_argument("--experiment", default=CONFIG["experiment"])
    parser.add_argument("--tag", default=CONFIG["tag"])
    parser.add_argument("--tab", default=CONFIG["tab"], choices=["model", "data", "train"])
    parser.add_argument("--frame", type=int, default=-1,
                        help="frame index, negative counts from the end")
    parser.add_argument("--context", default=None,
                        help="comma separated token indices, e.g. 0,1,1")
    parser.add_argument("--token", default=None, help="selected input node id")
    parser.add_argument("--node", default=CONFIG["inspected_node"],
                        help="inspected head, e.g. 0_0_0")
    parser.add_argument("--mode", default=CONFIG["aggregate_mode"],
                        choices=[m.value for m in AggregateMode])
    parser.add_argument("--play", action="store_true", help="play through all frames")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args()


def load(args):
    """Load the requested experiment, or fall back to the demo when no data directory exists."""
    if not os.path.isdir(args.data_dir):
        print(f"\nNo data directory at '{args.data_dir}', using the demo experiment.")
        config, frames = create_demo_experiment(CONFIG["demo_frames"], CONFIG["demo_seed"])
        return "demo", "default", config, frames

    experiments = load_experiments(args.data_dir)
    glossary = load_tag_glossary(args.data_dir)
    meta = experiments.get(args.experiment, {})
    print(f"\nExperiment: {meta.get('name', args.experiment)}")
    if meta.get("notes"):
        print(f"  {meta['notes']}")
    print(f"Configuration: {parse_tag(args.tag, glossary)}")

    config, frames = load_experiment(args.data_dir, args.experiment, args.tag)
    return args.experiment, args.tag, config, frames


def main():
    """Run the walkthrough."""
    args = parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    print_separator("TRANSFORMER CHECKPOINT INSPECTOR")

    # =========================================================================
    # Step 1: Load data
    # =========================================================================
    print_separator("STEP 1: Loading Experiment")

    experiment, tag, config, frames = load(args)
    state = reduce(AppState(), "load_experiment", experiment=experiment, tag=tag,
                   n_frames=len(frames))
    state = reduce(state, "set_tab", tab=args.tab)
    state = reduce(state, "set_frame", frame_idx=args.frame, n_frames=len(frames))

    print(f"\n{len(frames)} frames, vocabulary: {' '.join(config.vocabulary)}")

    # =========================================================================
    # Step 2: Parameters
    # =========================================================================
    print_separator(f"STEP 2: Parameters ({state.current_tab})")

    for title, value in experimental_params(config, state.current_tab):
        print(f"  {title:20s} {value}")

    # =========================================================================
    # Step 3: Network graph
    # =========================================================================
    print_separator("STEP 3: Building Network")

    if args.context is not None:
        state = reduce(state, "toggle_context", use_context=True)
        for token in args.context.split(","):
            state = reduce(state, "push_token", token=int(token), n_ctx=config.n_ctx)

    if state.use_context:
        input_idxs = list(state.context)
        labels = [config.vocabulary[i] for i in input_idxs]
    else:
        labels = list(config.vocabulary[:CONFIG["max_vocab"]])
        input_idxs = list(range(len(labels)))

    network = build_network([config.n_heads] * config.n_blocks, labels, CONFIG["max_heads"])
    print(f"\nLayer sizes: {network.shape()}")
    print(f"Links: {len(network.links)}")

    # =========================================================================
    # Step 4: Forward pass
    # =========================================================================
    print_separator("STEP 4: Forward Pass")

    frame = frames[state.current_frame_idx]
    print(f"\n{frame_summary(frame)}")

    trace = None
    if forward_ready(state, config):
        trace = forward(
            state.context, frame, config,
            scale_by_d_head=CONFIG["scale_by_d_head"],
            mask_value=CONFIG["mask_value"],
            compose_blocks=CONFIG["compose_blocks"],
        )
        with np.printoptions(precision=3, suppress=True):
            for name, matrix in trace.as_dict().items():
                print(f"\n  {name} {matrix.shape}:\n{matrix}")
            for i, pattern in enumerate(trace.attn_weights):
                print(f"\n  attention {i}:\n{pattern}")
        context_text = " ".join(config.vocabulary[i] for i in state.context)
        print(f"\n  Context: {context_text}  ->  predicted: {config.vocabulary[trace.result]}")
    else:
        print(f"\n  Forward pass needs a context of {config.n_ctx} tokens "
              f"(have {len(state.context)}); pass --context")

    # =========================================================================
    # Step 5: Link weights
    # =========================================================================
    print_separator("STEP 5: Link Weights")

    if args.token is not None:
        state = reduce(state, "select_token", token_id=args.token)
    state = reduce(state, "select_node", node_id=args.node)

    # Context-aware patterns when the forward pass ran, logged ones otherwise
    if trace is not None:
        head_matrices = trace.attn_weights[:config.n_heads]
    else:
        head_matrices = frame.blocks[0].attention if frame.blocks else []
    if head_matrices:
        update_weights(network, head_matrices, state.active_token_id,
                       state.active_node_id, AggregateMode(args.mode))
        for link in network.links:
            print(f"  {link.id:12s} {link.weight:.3f}")
    else:
        print("\n  No logged attention patterns to project")

    # =========================================================================
    # Step 6: Inspected node
    # =========================================================================
    print_separator("STEP 6: Inspection")

    block_idx, head_idx, is_output = parse_node_id(state.active_node_id)
    side = ("ov" if is_output else "qk") if state.use_context else \
        ("output" if is_output else "attention")
    print(f"\nHead: {block_idx}.{head_idx} {side}")
    with np.printoptions(precision=3, suppress=True):
        print(node_matrix(frame, state.active_node_id, input_idxs, state.use_context))

    # =========================================================================
    # Step 7: Playback
    # =========================================================================
    if args.play:
        print_separator("STEP 7: Playback")

        player = Player()
        current = {"state": reduce(state, "set_frame", frame_idx=0, n_frames=len(frames))}
        print(f"  {frame_summary(frames[0])}")

        def on_step(count):
            current["state"], at_end = step(current["state"], count, len(frames))
            print(f"  {frame_summary(frames[current['state'].current_frame_idx])}")
            if at_end:
                player.pause()

        player.on_tick(on_step)
        player.play()
        player.run()

    print_separator("COMPLETE")


if __name__ == "__main__":
    main()
