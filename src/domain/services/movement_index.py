"""
Movement index - at most one movement per underlying event.

Lookups follow Movement.same_event: the natural key (end-to-end id) decides
when both sides carry one; otherwise the provider-local (provider, id) key
decides.
"""

from __future__ import annotations

from itertools import count
from typing import Dict, Iterator, List, Optional, Tuple

from ...models.movement import MergeKey, Movement


class MovementIndex:
    """Insertion-ordered upsert store for movements."""

    def __init__(self):
        self._slots: Dict[int, Tuple[int, Movement]] = {}
        self._by_natural: Dict[MergeKey, int] = {}
        self._by_provider: Dict[MergeKey, int] = {}
        self._slot_ids = count()
        self._seq = count()

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[Movement]:
        return (movement for _, movement in self._slots.values())

    def __contains__(self, movement: Movement) -> bool:
        return self._find_slot(movement) is not None

    def _find_slot(self, movement: Movement) -> Optional[int]:
        natural = movement.natural_key
        if natural is not None and natural in self._by_natural:
            return self._by_natural[natural]

        slot = self._by_provider.get(movement.provider_key)
        if slot is not None and self._slots[slot][1].same_event(movement):
            return slot
        return None

    def _matching_slots(self, movement: Movement) -> List[int]:
        """Every stored slot describing the same event, natural-key match first."""
        slots: List[int] = []
        natural = movement.natural_key
        if natural is not None and natural in self._by_natural:
            slots.append(self._by_natural[natural])

        slot = self._by_provider.get(movement.provider_key)
        if slot is not None and slot not in slots and self._slots[slot][1].same_event(movement):
            slots.append(slot)
        return slots

    def find(self, movement: Movement) -> Optional[Movement]:
        """Stored movement describing the same event, if any."""
        slot = self._find_slot(movement)
        return self._slots[slot][1] if slot is not None else None

    def get(self, key: MergeKey) -> Optional[Movement]:
        """Look up by merge key (natural or provider key)."""
        slot = self._by_natural.get(key)
        if slot is None:
            slot = self._by_provider.get(key)
        return self._slots[slot][1] if slot is not None else None

    def upsert(self, movement: Movement) -> Optional[Movement]:
        """
        Insert `movement`, replacing any stored record of the same event.

        Returns:
            The replaced movement, or None for an insert.
        """
        slots = self._matching_slots(movement)
        replaced = None
        if not slots:
            slot = next(self._slot_ids)
        else:
            slot = slots[0]
            replaced = self._slots[slot][1]
            self._unlink(replaced, slot)
            # The new record can bridge two stored entries (e2e on one, provider id on the other)
            for extra in slots[1:]:
                _, duplicate = self._slots.pop(extra)
                self._unlink(duplicate, extra)

        self._slots[slot] = (next(self._seq), movement)
        if movement.natural_key is not None:
            self._by_natural[movement.natural_key] = slot
        self._by_provider[movement.provider_key] = slot
        return replaced

    def remove(self, movement: Movement) -> Optional[Movement]:
        slot = self._find_slot(movement)
        if slot is None:
            return None
        _, stored = self._slots.pop(slot)
        self._unlink(stored, slot)
        return stored

    def _unlink(self, movement: Movement, slot: int) -> None:
        if movement.natural_key is not None and self._by_natural.get(movement.natural_key) == slot:
            del self._by_natural[movement.natural_key]
        if self._by_provider.get(movement.provider_key) == slot:
            del self._by_provider[movement.provider_key]

    def clear(self) -> None:
        self._slots.clear()
        self._by_natural.clear()
        self._by_provider.clear()

    def values(self) -> List[Movement]:
        return list(self)

    def sorted_desc(self) -> List[Movement]:
        """Newest first; among equal timestamps the most recent upsert first."""
        ordered = sorted(self._slots.values(), key=lambda entry: (entry[1].occurred_at, entry[0]), reverse=True)
        return [movement for _, movement in ordered]
