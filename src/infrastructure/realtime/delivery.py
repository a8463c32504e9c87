"""Per-context delivery policy for live domain events."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

from config.models import ContextsConfig

from ...models.subscription import PLATFORM_ROOM, Subscription, SubscriptionContext, tenant_room


def _scope_value(data: Mapping[str, Any], snake: str, camel: str) -> Optional[str]:
    value = data.get(snake)
    if value is None:
        value = data.get(camel)
    return None if value is None else str(value)


def should_deliver(
    event_data: Mapping[str, Any],
    subscription: Subscription,
    contexts: Optional[ContextsConfig] = None,
) -> bool:
    """
    Whether a domain event belongs to a subscription.

    - API: everything.
    - OTC: only the configured (tenant, account) pair, 3/27 by default.
    - TCR: only the subscription's tenant, falling back to the configured one (2).

    Tenant and account ids are compared as strings. Events without scope
    fields are only visible to the API context.
    """
    contexts = contexts or ContextsConfig()

    if subscription.context is SubscriptionContext.API:
        return True

    tenant = _scope_value(event_data, "tenant_id", "tenantId")

    if subscription.context is SubscriptionContext.OTC:
        wanted_tenant = str(subscription.tenant_id) if subscription.tenant_id is not None else contexts.otc_tenant_id
        wanted_account = str(subscription.account_id) if subscription.account_id is not None else contexts.otc_account_id
        account = _scope_value(event_data, "account_id", "accountId")
        return tenant == wanted_tenant and account == wanted_account

    if subscription.context is SubscriptionContext.TCR:
        wanted_tenant = str(subscription.tenant_id) if subscription.tenant_id is not None else contexts.tcr_tenant_id
        return tenant == wanted_tenant

    return False


def subscription_rooms(
    subscription: Subscription,
    contexts: Optional[ContextsConfig] = None,
) -> Tuple[str, ...]:
    """
    Rooms to join for a subscription.

    OTC and TCR subscriptions without a tenant use the configured tenant,
    the same fallback should_deliver applies, so tenant-scoped events reach
    them.
    """
    if subscription.tenant_id is not None or subscription.context is SubscriptionContext.API:
        return subscription.rooms()
    contexts = contexts or ContextsConfig()
    if subscription.context is SubscriptionContext.OTC:
        return (PLATFORM_ROOM, tenant_room(contexts.otc_tenant_id))
    return (PLATFORM_ROOM, tenant_room(contexts.tcr_tenant_id))
