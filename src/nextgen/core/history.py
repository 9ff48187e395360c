"""
History normalization for completion providers.

Providers require the conversation to start with a user turn and to strictly alternate roles.  The
caller's history usually already ends with the current user message, so a placeholder model turn is
appended in that case; the transport adds the new user turn itself.
"""

from typing import (
    List,
    Sequence,
)

from nextgen.core.schema import (
    ConversationTurn,
    Role,
)

ACK_PLACEHOLDER = "Acknowledged input."
MERGE_SEPARATOR = "\n\n"


def merge_adjacent(turns: Sequence[ConversationTurn]) -> List[ConversationTurn]:
    """Collapse runs of same-role turns into one turn, joined by a blank line."""
    merged: List[ConversationTurn] = []
    for turn in turns:
        if merged and merged[-1].role == turn.role:
            previous = merged[-1]
            merged[-1] = ConversationTurn(
                role=previous.role, content=previous.content + MERGE_SEPARATOR + turn.content
            )
        else:
            merged.append(ConversationTurn(role=turn.role, content=turn.content))
    return merged


def normalize_history(
    history: Sequence[ConversationTurn], max_turns: int = 10
) -> List[ConversationTurn]:
    """
    Prepare *history* for submission to a completion provider.

    Steps, in order:

    1. keep only the most recent *max_turns* turns;
    2. merge adjacent same-role turns;
    3. drop leading turns until the first one is authored by the user;
    4. if the last turn is a user turn, append a placeholder model turn.

    The result is either empty or starts with ``user`` and never contains two adjacent turns with
    the same role.
    """
    recent = list(history)[-max_turns:] if max_turns > 0 else []
    turns = merge_adjacent(recent)

    while turns and turns[0].role != Role.USER:
        turns.pop(0)

    if turns and turns[-1].role == Role.USER:
        turns.append(ConversationTurn(role=Role.MODEL, content=ACK_PLACEHOLDER))

    return turns
