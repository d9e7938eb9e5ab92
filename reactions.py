"""Per-viewer like/dislike ledger.

Each (video, identity key) pair is in one of three states. Aggregate
``likes``/``dislikes`` on the video always equal the number of ledger
entries of each kind, so every transition adjusts both in one step.
There is no transition back to ``NONE``.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from schemas import Database, ReactionType, VideoMetadata


class ReactionState(str, Enum):
    NONE = "none"
    LIKED = "like"
    DISLIKED = "dislike"


# (state, requested) -> (next state, likes delta, dislikes delta)
TRANSITIONS: Dict[Tuple[ReactionState, ReactionType], Tuple[ReactionState, int, int]] = {
    (ReactionState.NONE, ReactionType.LIKE): (ReactionState.LIKED, 1, 0),
    (ReactionState.NONE, ReactionType.DISLIKE): (ReactionState.DISLIKED, 0, 1),
    (ReactionState.LIKED, ReactionType.LIKE): (ReactionState.LIKED, 0, 0),
    (ReactionState.LIKED, ReactionType.DISLIKE): (ReactionState.DISLIKED, -1, 1),
    (ReactionState.DISLIKED, ReactionType.LIKE): (ReactionState.LIKED, 1, -1),
    (ReactionState.DISLIKED, ReactionType.DISLIKE): (ReactionState.DISLIKED, 0, 0),
}


def current_state(data: Database, video_id: str, identity_key: str) -> ReactionState:
    recorded = data.reactions.get(video_id, {}).get(identity_key)
    return ReactionState.NONE if recorded is None else ReactionState(recorded.value)


def apply_reaction(
    data: Database,
    meta: VideoMetadata,
    video_id: str,
    identity_key: str,
    requested: ReactionType,
) -> bool:
    """Move *identity_key*'s reaction on *video_id* toward *requested*.

    Mutates ``data.reactions`` and the counters on *meta*. Returns False for
    an idempotent re-submission, which changes nothing.
    """
    state = current_state(data, video_id, identity_key)
    next_state, d_likes, d_dislikes = TRANSITIONS[(state, requested)]
    if next_state is state:
        return False
    meta.likes = max(0, meta.likes + d_likes)
    meta.dislikes = max(0, meta.dislikes + d_dislikes)
    data.reactions.setdefault(video_id, {})[identity_key] = ReactionType(next_state.value)
    return True
