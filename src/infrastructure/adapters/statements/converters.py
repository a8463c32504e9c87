"""Field helpers shared by the statement adapters and push-event conversion."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from ....models.movement import Counterparty, Direction


CREDIT_KEYWORDS = ("recebimento", "credito", "crédito", "deposito", "depósito", "pix recebido")


def first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    """First value among `keys` that is not None or blank."""
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text in ("—", "-", "null", "None"):
        return None
    return text


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a monetary value.

    Accepts numbers, "1234.56", "1.234,56" and "1234,56".
    Returns None when the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    text = str(value).strip().replace("R$", "").replace(" ", "")
    if not text:
        return None
    if "," in text:
        # Brazilian format: dot thousands, comma decimals
        text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def direction_from_code(value: Any) -> Optional[Direction]:
    """C/D (or CREDITO/DEBITO) code to Direction."""
    code = clean_str(value)
    if code is None:
        return None
    code = code.upper()
    if code in ("C", "CREDITO", "CRÉDITO", "CREDIT"):
        return Direction.CREDIT
    if code in ("D", "DEBITO", "DÉBITO", "DEBIT"):
        return Direction.DEBIT
    return None


def direction_from_sign(amount: Optional[Decimal]) -> Optional[Direction]:
    if amount is None or amount == 0:
        return None
    return Direction.CREDIT if amount > 0 else Direction.DEBIT


def direction_from_keywords(texts: Iterable[Any]) -> Optional[Direction]:
    """CREDIT when any description mentions an inbound keyword."""
    for text in texts:
        lowered = (clean_str(text) or "").lower()
        if any(keyword in lowered for keyword in CREDIT_KEYWORDS):
            return Direction.CREDIT
    return None


def counterparty_from(name: Any, document: Any) -> Optional[Counterparty]:
    name = clean_str(name)
    document = clean_str(document)
    if name is None and document is None:
        return None
    return Counterparty(name=name, document=document)


def lower_or_none(value: Any) -> Optional[str]:
    text = clean_str(value)
    return text.lower() if text else None
