"""Canonical movement model shared by polled statements and live pushes."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Tuple


class Provider(Enum):
    """Upstream statement providers."""

    BMP = "bmp"  # BMP 274, cursor pagination
    BMP_531 = "bmp-531"  # BMP 531, cursor pagination plus account params
    BITSO = "bitso"  # Pay-in/pay-out marker pagination

    @classmethod
    def parse(cls, value: str) -> "Provider":
        """Resolve a provider from its tag (case-insensitive)."""
        normalized = value.strip().lower().replace("_", "-")
        for provider in cls:
            if provider.value == normalized:
                return provider
        raise ValueError(f"Unknown provider: {value}")


class Direction(Enum):
    """Movement direction relative to the account."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class MovementOrigin(Enum):
    """Where a movement entered the system."""

    POLL = "POLL"  # Fetched from a statement page
    PUSH = "PUSH"  # Delivered by the realtime channel (unconfirmed)


MergeKey = Tuple[str, str]


@dataclass(frozen=True)
class Counterparty:
    """Other side of a movement."""

    name: Optional[str] = None
    document: Optional[str] = None


@dataclass(frozen=True)
class Movement:
    """
    Canonical, immutable transaction record.

    Movements are never mutated after normalization; a newer record with the
    same merge key supersedes an older one during merge.
    """

    id: str
    provider: Provider
    occurred_at: datetime
    direction: Direction
    amount: Decimal
    currency: str = "BRL"
    counterparty: Optional[Counterparty] = None
    end_to_end_id: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    origin: MovementOrigin = MovementOrigin.POLL
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def natural_key(self) -> Optional[MergeKey]:
        """Cross-provider key, when the record carries an end-to-end id."""
        if self.end_to_end_id:
            return ("e2e", self.end_to_end_id)
        return None

    @property
    def provider_key(self) -> MergeKey:
        """Provider-local key."""
        return (self.provider.value, self.id)

    @property
    def merge_key(self) -> MergeKey:
        """Natural key when present, else (provider, id)."""
        return self.natural_key or self.provider_key

    @property
    def is_confirmed(self) -> bool:
        return self.origin is MovementOrigin.POLL

    def same_event(self, other: "Movement") -> bool:
        """
        Whether two records describe the same underlying event.

        Natural keys decide when both sides have one; otherwise the
        provider-local id decides.
        """
        if self.natural_key and other.natural_key:
            return self.natural_key == other.natural_key
        return self.provider_key == other.provider_key

    def differs_from(self, other: "Movement") -> Tuple[str, ...]:
        """Names of settlement fields that disagree between two records."""
        fields = []
        if self.amount != other.amount:
            fields.append("amount")
        if (self.status or None) != (other.status or None):
            fields.append("status")
        if self.direction != other.direction:
            fields.append("direction")
        if self.currency != other.currency:
            fields.append("currency")
        return tuple(fields)

    def with_origin(self, origin: MovementOrigin) -> "Movement":
        return replace(self, origin=origin)


def stable_id(raw: Mapping[str, Any]) -> str:
    """
    Derive a deterministic identifier for a record that carries none.

    Uses the canonical JSON form so refetching the same record yields the
    same id.
    """
    payload = json.dumps(raw, sort_keys=True, default=str, ensure_ascii=False)
    return "h:" + hashlib.sha1(payload.encode("utf-8")).hexdigest()[:20]
