"""
Conversion of realtime socket payloads into domain objects.

Every domain event arrives as {timestamp, data}. Naive timestamps are
America/Sao_Paulo, as in the statements. Movement events are keyed
by their end-to-end id so they merge with the polled Bitso statement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ...models.balance import BalanceSnapshot, CurrencyBalance
from ...models.movement import Direction, Movement, MovementOrigin, Provider, stable_id
from ...utils.timezone import SAO_PAULO, now_utc, parse_timestamp
from ..adapters.statements.converters import (
    clean_str,
    counterparty_from,
    first_present,
    lower_or_none,
    to_decimal,
)


TRANSACTION_EVENT = "bitso:transaction"
DEPOSIT_PROCESSED_EVENT = "bitso:deposit:processed"
WITHDRAWAL_COMPLETED_EVENT = "bitso:withdrawal:completed"
BALANCE_EVENT = "bitso:balance"

# Event kind used to pick the re-validation delay
EVENT_KINDS = {
    TRANSACTION_EVENT: "transaction",
    DEPOSIT_PROCESSED_EVENT: "deposit",
    WITHDRAWAL_COMPLETED_EVENT: "withdrawal",
}


@dataclass(frozen=True)
class LiveMovement:
    """A movement pushed by the channel, with the kind of event that carried it."""

    movement: Movement
    kind: str
    event: str


def unwrap(payload: Any) -> Tuple[Mapping[str, Any], Optional[datetime]]:
    """Split a {timestamp, data} envelope; bare payloads are their own data."""
    if not isinstance(payload, Mapping):
        raise ValueError(f"event payload must be an object, got {type(payload).__name__}")
    data = payload.get("data")
    if isinstance(data, Mapping):
        return data, parse_timestamp(payload.get("timestamp"), SAO_PAULO)
    return payload, None


def _amount(value: Any) -> Decimal:
    amount = to_decimal(value)
    if amount is None:
        raise ValueError(f"unparseable amount {value!r}")
    return abs(amount)


def _currency(data: Mapping[str, Any]) -> str:
    return (clean_str(data.get("currency")) or "BRL").upper()


def transaction_to_movement(data: Mapping[str, Any], received_at: Optional[datetime] = None) -> Movement:
    """bitso:transaction -> Movement (funding = CREDIT, withdrawal = DEBIT)."""
    kind = (clean_str(data.get("type")) or "").lower()
    direction = Direction.DEBIT if kind == "withdrawal" else Direction.CREDIT

    if direction is Direction.CREDIT:
        counterparty = counterparty_from(data.get("payerName"), data.get("payerTaxId"))
    else:
        counterparty = counterparty_from(data.get("payeeName"), data.get("payeeTaxId"))

    occurred_at = parse_timestamp(first_present(data, "createdAt", "receivedAt", "updatedAt"), SAO_PAULO)
    return Movement(
        id=clean_str(first_present(data, "id", "transactionId")) or stable_id(data),
        provider=Provider.BITSO,
        occurred_at=occurred_at or received_at or now_utc(),
        direction=direction,
        amount=_amount(data.get("amount")),
        currency=_currency(data),
        counterparty=counterparty,
        end_to_end_id=clean_str(first_present(data, "endToEndId", "transactionId")),
        status=lower_or_none(data.get("status")),
        description="reversal" if data.get("isReversal") else None,
        origin=MovementOrigin.PUSH,
        raw=dict(data),
    )


def deposit_to_movement(data: Mapping[str, Any], received_at: Optional[datetime] = None) -> Movement:
    """bitso:deposit:processed -> CREDIT Movement."""
    occurred_at = parse_timestamp(data.get("processed_at"), SAO_PAULO)
    return Movement(
        id=clean_str(data.get("transaction_id")) or stable_id(data),
        provider=Provider.BITSO,
        occurred_at=occurred_at or received_at or now_utc(),
        direction=Direction.CREDIT,
        amount=_amount(first_present(data, "amount", "gross_amount")),
        currency=_currency(data),
        end_to_end_id=clean_str(first_present(data, "end_to_end_id", "transaction_id")),
        status=lower_or_none(data.get("status")),
        origin=MovementOrigin.PUSH,
        raw=dict(data),
    )


def withdrawal_to_movement(data: Mapping[str, Any], received_at: Optional[datetime] = None) -> Movement:
    """bitso:withdrawal:completed -> DEBIT Movement with the payee as counterparty."""
    payee = data.get("payee") if isinstance(data.get("payee"), Mapping) else {}
    occurred_at = parse_timestamp(data.get("completed_at"), SAO_PAULO)
    return Movement(
        id=clean_str(data.get("transaction_id")) or stable_id(data),
        provider=Provider.BITSO,
        occurred_at=occurred_at or received_at or now_utc(),
        direction=Direction.DEBIT,
        amount=_amount(data.get("amount")),
        currency=_currency(data),
        counterparty=counterparty_from(payee.get("name"), payee.get("tax_id")),
        end_to_end_id=clean_str(first_present(data, "end_to_end_id", "transaction_id")),
        status=lower_or_none(data.get("status")),
        origin=MovementOrigin.PUSH,
        raw=dict(data),
    )


MOVEMENT_CONVERTERS: Dict[str, Callable[[Mapping[str, Any], Optional[datetime]], Movement]] = {
    TRANSACTION_EVENT: transaction_to_movement,
    DEPOSIT_PROCESSED_EVENT: deposit_to_movement,
    WITHDRAWAL_COMPLETED_EVENT: withdrawal_to_movement,
}


def to_live_movement(event: str, payload: Any) -> LiveMovement:
    """
    Convert a movement event envelope.

    Raises:
        ValueError: Unknown event or malformed payload.
    """
    converter = MOVEMENT_CONVERTERS.get(event)
    if converter is None:
        raise ValueError(f"not a movement event: {event}")
    data, sent_at = unwrap(payload)
    movement = converter(data, sent_at or now_utc())
    return LiveMovement(movement=movement, kind=EVENT_KINDS[event], event=event)


def balance_to_snapshot(payload: Any, received_at: Optional[datetime] = None) -> BalanceSnapshot:
    """bitso:balance -> BalanceSnapshot; unparseable entries are skipped."""
    data, sent_at = unwrap(payload)
    entries = data.get("balances")
    if not isinstance(entries, list):
        raise ValueError("balance event without a balances list")

    balances = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not clean_str(entry.get("currency")):
            continue
        available = to_decimal(entry.get("available"))
        total = to_decimal(entry.get("total"))
        locked = to_decimal(entry.get("locked"))
        balances.append(CurrencyBalance(
            currency=str(entry["currency"]).upper(),
            available=available if available is not None else Decimal(0),
            total=total if total is not None else Decimal(0),
            locked=locked if locked is not None else Decimal(0),
            pending_deposit=to_decimal(entry.get("pendingDeposit")),
            pending_withdrawal=to_decimal(entry.get("pendingWithdrawal")),
        ))

    return BalanceSnapshot(
        provider=Provider.BITSO,
        balances=tuple(balances),
        received_at=received_at or sent_at or now_utc(),
    )
