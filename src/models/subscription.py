"""Realtime connection state and subscription models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


PLATFORM_ROOM = "platform"


class ConnectionState(Enum):
    """Realtime channel connection state. Written only by RealtimeChannel."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"


class SubscriptionContext(Enum):
    """Dashboard context deciding which live events a consumer sees."""

    API = "api"  # Every event
    OTC = "otc"  # Fixed (tenant, account) pair
    TCR = "tcr"  # Configurable tenant


@dataclass(frozen=True)
class Subscription:
    """Identifies which live events a consumer receives."""

    context: SubscriptionContext
    tenant_id: Optional[int] = None
    account_id: Optional[int] = None

    def rooms(self) -> Tuple[str, ...]:
        """Rooms that must be joined for this subscription."""
        if self.tenant_id is None:
            return (PLATFORM_ROOM,)
        return (PLATFORM_ROOM, tenant_room(self.tenant_id))


def tenant_room(tenant_id: Union[int, str]) -> str:
    return f"tenant:{tenant_id}"
