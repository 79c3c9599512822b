"""
Transformer Checkpoints and Forward-Pass Reconstruction

This module implements:
- TransformerConfig: hyperparameters and vocabulary of a logged experiment
- TransformerBlock: the per-head QK / OV circuits logged for one block
- WeightFrame: one training checkpoint (all weights + loss/accuracy scalars)
- ResidualTrace: every named intermediate of a forward pass
- forward(): recompute the residual stream for an arbitrary context

Only the weights are logged during training. The activations are rebuilt
here, so attention can be inspected for any context the user types in,
not just the sequences seen in training.

Architecture (attention-only, residual stream):

    Token IDs ──► [Embedding] ──+── [Positional Embedding]
                                │
                                ▼
                            pre_block ───────────────────────┐
                                │                            │
                   for every head of every block:            │
          pattern = softmax(mask(pre_block @ QK^T @ pre_block^T))
          out     = (pattern^T @ pre_block) @ OV^T ──────────+──► block1
                                                                  │
                                       logits ◄── [Unembedding] ◄─┘
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .attention import MASK_VALUE, attention_pattern, head_output
from .matrix import ShapeMismatchError, add, argmax, as_matrix, clone, multiply, stack_rows


@dataclass(frozen=True)
class TransformerConfig:
    """
    Hyperparameters of one logged experiment.

    A frame is only meaningful together with the config it was logged
    under; loading a new experiment replaces both.
    """

    # Number of tokens attended over (the full context window)
    n_ctx: int

    # Width of the residual stream
    d_embed: int

    # Per-head key/query width, used to scale attention logits
    d_head: int

    # Attention heads per block
    n_heads: int

    # Transformer blocks (layers)
    n_blocks: int

    # Vocabulary size and display label per token
    n_vocab: int
    vocabulary: tuple = ()

    # Remaining keys of the config file (d_mlp, learning_rate, operation, ...)
    extras: dict = field(default_factory=dict, compare=False)

    FIELDS = ("n_ctx", "d_embed", "d_head", "n_heads", "n_blocks", "n_vocab", "vocabulary")

    def __post_init__(self):
        # Unlabelled vocabularies are shown by token index
        if not self.vocabulary:
            object.__setattr__(self, "vocabulary", tuple(str(i) for i in range(self.n_vocab)))
        if len(self.vocabulary) != self.n_vocab:
            raise ShapeMismatchError(
                f"vocabulary has {len(self.vocabulary)} labels but n_vocab is {self.n_vocab}"
            )

    @classmethod
    def from_dict(cls, data):
        """
        Build a config from the parsed config JSON.

        n_vocab falls back to len(vocabulary) when the file omits it, and the
        vocabulary falls back to the labels "0".."n_vocab-1".
        """
        vocabulary = tuple(str(token) for token in data.get("vocabulary", ()))
        try:
            return cls(
                n_ctx=int(data["n_ctx"]),
                d_embed=int(data["d_embed"]),
                d_head=int(data["d_head"]),
                n_heads=int(data["n_heads"]),
                n_blocks=int(data["n_blocks"]),
                n_vocab=int(data.get("n_vocab", len(vocabulary))),
                vocabulary=vocabulary,
                extras={k: v for k, v in data.items() if k not in cls.FIELDS},
            )
        except KeyError as e:
            raise ValueError(f"config is missing required key {e}") from None

    def to_dict(self):
        data = dict(self.extras)
        for name in self.FIELDS:
            data[name] = getattr(self, name)
        data["vocabulary"] = list(self.vocabulary)
        return data


@dataclass
class TransformerBlock:
    """
    Weights logged for one block.

    qk / ov hold one matrix per head and feed the forward pass.
    attention / output are the older dense per-head patterns, displayed
    directly when no context is in use. mlp is carried but unused.
    """

    qk: list
    ov: list
    attention: list = field(default_factory=list)
    output: list = field(default_factory=list)
    mlp: Optional[np.ndarray] = None

    @classmethod
    def from_dict(cls, data):
        def heads(key):
            return [as_matrix(m, f"{key}[{i}]") for i, m in enumerate(data.get(key) or [])]

        mlp = data.get("mlp")
        return cls(
            qk=heads("qk"),
            ov=heads("ov"),
            attention=heads("attention"),
            output=heads("output"),
            mlp=None if mlp is None else np.asarray(mlp, dtype=np.float64),
        )


@dataclass
class WeightFrame:
    """One logged training checkpoint."""

    epoch: int
    loss_train: float
    loss_test: float
    accuracy_test: float

    # (n_vocab, d_embed): one row per token
    embedding: np.ndarray

    # (d_embed, n_vocab): final residual -> vocabulary logits
    unembedding: np.ndarray

    # (n_ctx, d_embed): one row per context slot
    pos_embed: np.ndarray

    blocks: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data):
        """
        Build a frame from one entry of the parsed frames JSON.

        Scalars use the camelCase keys of the logged files
        (lossTrain, lossTest, accuracyTest).
        """
        try:
            return cls(
                epoch=int(data.get("epoch", 0)),
                loss_train=float(data.get("lossTrain", np.nan)),
                loss_test=float(data.get("lossTest", np.nan)),
                accuracy_test=float(data.get("accuracyTest", np.nan)),
                embedding=as_matrix(data["embedding"], "embedding"),
                unembedding=as_matrix(data["unembedding"], "unembedding"),
                pos_embed=as_matrix(data["pos_embed"], "pos_embed"),
                blocks=[TransformerBlock.from_dict(b) for b in data.get("blocks", [])],
            )
        except KeyError as e:
            raise ValueError(f"frame is missing required key {e}") from None

    def validate(self, config, for_forward=False):
        """
        Check every logged dimension against the config.

        Logged variants with (d_head, d_embed) circuits or an (n_ctx, n_vocab)
        unembedding are accepted for display. With for_forward=True only the
        shapes forward() can compose pass: (d_embed, d_embed) circuits and a
        (d_embed, n_vocab) unembedding.

        Raises:
            ShapeMismatchError: naming the first field that disagrees
        """
        def expect(name, shape, allowed):
            if shape not in allowed:
                wanted = " or ".join(str(s) for s in allowed)
                raise ShapeMismatchError(
                    f"epoch {self.epoch}: {name} has shape {shape}, expected {wanted}"
                )

        c = config
        expect("embedding", self.embedding.shape, [(c.n_vocab, c.d_embed)])
        expect("pos_embed", self.pos_embed.shape, [(c.n_ctx, c.d_embed)])
        unembed_shapes = [(c.d_embed, c.n_vocab)]
        circuit_shapes = [(c.d_embed, c.d_embed)]
        if not for_forward:
            unembed_shapes.append((c.n_ctx, c.n_vocab))
            circuit_shapes.append((c.d_head, c.d_embed))
        expect("unembedding", self.unembedding.shape, unembed_shapes)

        if len(self.blocks) != c.n_blocks:
            raise ShapeMismatchError(
                f"epoch {self.epoch}: {len(self.blocks)} blocks, expected {c.n_blocks}"
            )

        for b, block in enumerate(self.blocks):
            for key in ("qk", "ov", "attention", "output"):
                matrices = getattr(block, key)
                if key in ("attention", "output") and not matrices:
                    continue
                if len(matrices) != c.n_heads:
                    raise ShapeMismatchError(
                        f"epoch {self.epoch}: block {b} has {len(matrices)} {key} "
                        f"heads, expected {c.n_heads}"
                    )
                if key in ("qk", "ov"):
                    for h, m in enumerate(matrices):
                        expect(f"blocks[{b}].{key}[{h}]", m.shape, circuit_shapes)
        return self


@dataclass
class ResidualTrace:
    """
    Every named intermediate of one forward pass.

    Each field is displayed on its own heatmap, so nothing is collapsed.
    """

    position: np.ndarray        # (n_ctx, d_embed)
    embedding: np.ndarray       # (n_ctx, d_embed)
    pre_block: np.ndarray       # embedding + position
    block1: np.ndarray          # final residual after every head
    unembed: np.ndarray         # (n_ctx, n_vocab) logits
    attn_weights: list          # one (n_ctx, n_ctx) pattern per (block, head)
    result: int                 # predicted next token
    resblocks: list = field(default_factory=list)  # residual after each block

    def as_dict(self):
        """Name -> matrix mapping, keyed the way the residual panels are labelled."""
        named = {
            "position": self.position,
            "embedding": self.embedding,
            "preBlock": self.pre_block,
            "block1": self.block1,
            "unembed": self.unembed,
        }
        for idx, resid in enumerate(self.resblocks):
            named[f"resblock{idx}"] = resid
        return named


def forward(context, frame, config, scale_by_d_head=True, mask_value=MASK_VALUE,
            compose_blocks=False):
    """
    Recompute the residual stream for a full context window.

    Args:
        context: Token indices, length exactly config.n_ctx
        frame: WeightFrame to read weights from
        config: TransformerConfig the frame was logged under
        scale_by_d_head: Divide attention logits by sqrt(d_head); when False
                         the logits are only masked
        mask_value: Logit written into future positions
        compose_blocks: When False (default) every head reads pre_block, the
                        embedding-plus-position residual. When True each
                        block reads the residual accumulated so far.

    Returns:
        ResidualTrace

    Raises:
        ValueError: if the context is not exactly n_ctx tokens long, or a
                    token lies outside the vocabulary
        ShapeMismatchError: if the frame does not match the config in the
                            shapes forward() composes
    """
    context = [int(tok) for tok in context]
    if len(context) != config.n_ctx:
        raise ValueError(
            f"forward needs a full context of {config.n_ctx} tokens, got {len(context)}"
        )
    for tok in context:
        if not 0 <= tok < config.n_vocab:
            raise ValueError(f"token index {tok} outside vocabulary of size {config.n_vocab}")
    frame.validate(config, for_forward=True)

    # =====================================================================
    # Step 1: Token embedding, one row per context slot
    # =====================================================================
    embedding = stack_rows(frame.embedding, context)  # (n_ctx, d_embed)

    # =====================================================================
    # Step 2: Positional embedding is already (n_ctx, d_embed)
    # =====================================================================
    position = clone(frame.pos_embed)

    # =====================================================================
    # Step 3: Initial residual stream
    # =====================================================================
    pre_block = add(embedding, position)

    # =====================================================================
    # Step 4: Running residual; every head's output is added to it
    # =====================================================================
    block1 = clone(pre_block)
    resblocks = [clone(pre_block)]

    scale = np.sqrt(config.d_head) if scale_by_d_head else 1.0

    # =====================================================================
    # Step 5: Attention heads, block by block
    # =====================================================================
    attn_weights = []
    for block in frame.blocks:
        resid = clone(block1) if compose_blocks else pre_block
        for qk, ov in zip(block.qk, block.ov):
            pattern = attention_pattern(resid, qk, scale, mask_value)
            block1 = add(block1, head_output(pattern, resid, ov))
            attn_weights.append(pattern)
        resblocks.append(clone(block1))

    # =====================================================================
    # Step 6: Project the final residual onto the vocabulary
    # =====================================================================
    unembed = multiply(block1, frame.unembedding)  # (n_ctx, n_vocab)

    # =====================================================================
    # Step 7: Prediction for the token after the context
    # =====================================================================
    result = argmax(unembed[-1])

    return ResidualTrace(
        position=position,
        embedding=embedding,
        pre_block=pre_block,
        block1=block1,
        unembed=unembed,
        attn_weights=attn_weights,
        result=result,
        resblocks=resblocks,
    )
