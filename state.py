"""
Application State

Everything the user can change (experiment, frame, context, selections)
lives in one immutable AppState. Every interaction is a call to
reduce(state, action, **payload), which returns a new state; the matrix
and graph code in inspector/ never sees this object, only the values
pulled out of it.

Selections come in two flavours:
- selected_*: set by clicking, toggled off by clicking again
- active_*: what is currently highlighted (a hover overrides the selection)
"""

from dataclasses import dataclass, replace

from config import CONFIG


@dataclass(frozen=True)
class AppState:
    experiment: str = CONFIG["experiment"]
    current_tag: str = CONFIG["tag"]
    current_tab: str = CONFIG["tab"]
    current_frame_idx: int = 0
    use_context: bool = False

    selected_token_id: str = None
    selected_node_id: str = None
    active_token_id: str = None
    active_node_id: str = CONFIG["inspected_node"]

    # Token indices fed to the forward pass, oldest first
    context: tuple = ()


TABS = ("model", "data", "train")


def load_experiment(state, experiment=None, tag=None, n_frames=0):
    """Switch experiment/tag: clear selections and context, jump to the last frame."""
    state = replace(
        state,
        experiment=state.experiment if experiment is None else experiment,
        current_tag=state.current_tag if tag is None else tag,
        selected_token_id=None,
        selected_node_id=CONFIG["inspected_node"],
        active_token_id=None,
        active_node_id=CONFIG["inspected_node"],
        context=(),
    )
    return set_frame(state, -1, n_frames)


def set_frame(state, frame_idx, n_frames):
    """
    Jump to a frame. Negative indices count from the end, -1 being the
    last frame.
    """
    if frame_idx < 0:
        frame_idx = max(0, n_frames + frame_idx)
    return replace(state, current_frame_idx=frame_idx)


def step(state, count, n_frames):
    """
    Move count frames, clamped to [0, n_frames - 1].

    Returns:
        (new_state, at_end): at_end is True when the last frame is
        reached, the signal for the player to pause. An experiment
        without frames is always at its end.
    """
    if n_frames <= 0:
        return replace(state, current_frame_idx=0), True
    frame_idx = max(0, min(n_frames - 1, state.current_frame_idx + count))
    return set_frame(state, frame_idx, n_frames), frame_idx == n_frames - 1


def push_token(state, token, n_ctx):
    """Append a token to the context, dropping the oldest beyond n_ctx."""
    context = state.context + (int(token),)
    if len(context) > n_ctx:
        context = context[len(context) - n_ctx:]
    return replace(state, context=context)


def toggle_context(state, use_context=None):
    if use_context is None:
        use_context = not state.use_context
    return replace(state, use_context=bool(use_context))


def select_token(state, token_id):
    """Click on an input node: select it, or deselect if already selected."""
    selected = None if state.selected_token_id == token_id else token_id
    return replace(state, selected_token_id=selected, active_token_id=selected)


def hover_token(state, token_id, entering):
    active = token_id if entering else state.selected_token_id
    return replace(state, active_token_id=active)


def select_node(state, node_id):
    """Click on a head canvas: select it, or deselect if already selected."""
    selected = None if state.selected_node_id == node_id else node_id
    return replace(state, selected_node_id=selected, active_node_id=selected or node_id)


def hover_node(state, node_id, entering):
    active = node_id if entering else (state.selected_node_id or node_id)
    return replace(state, active_node_id=active)


def set_tab(state, tab):
    if tab not in TABS:
        raise ValueError(f"unknown tab {tab!r}, expected one of {TABS}")
    return replace(state, current_tab=tab)


ACTIONS = {
    "load_experiment": load_experiment,
    "set_frame": set_frame,
    "push_token": push_token,
    "toggle_context": toggle_context,
    "select_token": select_token,
    "hover_token": hover_token,
    "select_node": select_node,
    "hover_node": hover_node,
    "set_tab": set_tab,
}


def reduce(state, action, **payload):
    """
    Apply one named action and return the new state.

    step is left out because it also reports whether playback should stop;
    call step() directly.
    """
    try:
        handler = ACTIONS[action]
    except KeyError:
        raise ValueError(f"unknown action {action!r}") from None
    return handler(state, **payload)


def forward_ready(state, config):
    """The forward pass only runs once the context window is full."""
    return state.use_context and len(state.context) == config.n_ctx
