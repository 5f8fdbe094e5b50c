"""Vote transitions for a single node.

Every toggle resolves to one net transition: the new vote state plus the one
mutation kind that describes it. A Down to Up flip is a single upvote, never a
retraction followed by an upvote.
"""

from dataclasses import dataclass

from thread_sync.models.node import ViewerVote, VoteDirection, VoteState
from thread_sync.models.sync import MutationKind


@dataclass(frozen=True)
class VoteTransition:
    before: VoteState
    after: VoteState
    kind: MutationKind
    direction: VoteDirection


def _dec(count: int) -> int:
    return max(0, count - 1)


def toggle_up(state: VoteState) -> VoteTransition:
    if state.viewer_vote == ViewerVote.UP:
        after = VoteState(_dec(state.upvotes), state.downvotes, ViewerVote.NONE)
        kind = MutationKind.RETRACT_VOTE
    elif state.viewer_vote == ViewerVote.DOWN:
        after = VoteState(state.upvotes + 1, _dec(state.downvotes), ViewerVote.UP)
        kind = MutationKind.UPVOTE
    else:
        after = VoteState(state.upvotes + 1, state.downvotes, ViewerVote.UP)
        kind = MutationKind.UPVOTE
    return VoteTransition(before=state, after=after, kind=kind, direction=VoteDirection.UP)


def toggle_down(state: VoteState) -> VoteTransition:
    if state.viewer_vote == ViewerVote.DOWN:
        after = VoteState(state.upvotes, _dec(state.downvotes), ViewerVote.NONE)
        kind = MutationKind.RETRACT_VOTE
    elif state.viewer_vote == ViewerVote.UP:
        after = VoteState(_dec(state.upvotes), state.downvotes + 1, ViewerVote.DOWN)
        kind = MutationKind.DOWNVOTE
    else:
        after = VoteState(state.upvotes, state.downvotes + 1, ViewerVote.DOWN)
        kind = MutationKind.DOWNVOTE
    return VoteTransition(before=state, after=after, kind=kind, direction=VoteDirection.DOWN)


def toggle(state: VoteState, direction: VoteDirection) -> VoteTransition:
    """Apply the button the viewer pressed."""
    if direction == VoteDirection.UP:
        return toggle_up(state)
    return toggle_down(state)
