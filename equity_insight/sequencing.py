"""Per-slot request sequencing so late responses cannot overwrite newer ones."""

import itertools
from typing import Dict


class SequenceTracker:
    """
    Issues monotonic sequence numbers per logical slot and arbitrates results.

    A slot is anything one displayed value belongs to ("screener", a chat
    message id, ...). Each request takes a number from issue(); when its
    response arrives, accept() admits it only if no higher-numbered response
    for the same slot has been admitted already.

    Representation Invariants:
    - numbers issued by one tracker are strictly increasing across all slots
    - _accepted[slot] only grows
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._accepted: Dict[str, int] = {}

    def issue(self) -> int:
        return next(self._counter)

    def accept(self, slot: str, sequence: int) -> bool:
        """
        Record a completed response if it is the newest seen for the slot.

        Returns:
            True if the response should be displayed, False if it is stale
        """
        if sequence < self._accepted.get(slot, 0):
            return False
        self._accepted[slot] = sequence
        return True
