"""Reaction aggregation for a single message."""
from typing import Dict, Tuple

from .schemas import Reaction


def toggle_reaction(
    reactions: Dict[str, Reaction], emoji: str, user_id: str
) -> Tuple[Dict[str, Reaction], bool]:
    """Flip ``user_id``'s membership in ``emoji`` and return the new map.

    The input map is not modified. An emoji whose last user is removed
    disappears from the map entirely.

    Returns:
        Tuple of (reactions, added):
        - reactions: The updated emoji -> Reaction map.
        - added: True if the user now reacts with ``emoji``, False if removed.
    """
    updated = {key: value.model_copy(deep=True) for key, value in reactions.items()}
    entry = updated.get(emoji) or Reaction()

    if user_id in entry.users:
        entry.users.remove(user_id)
        added = False
    else:
        entry.users.append(user_id)
        added = True
    entry.count = len(entry.users)

    if entry.count == 0:
        updated.pop(emoji, None)
    else:
        updated[emoji] = entry
    return updated, added
