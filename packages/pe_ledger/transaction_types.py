"""Transaction-type directionality table.

Maps a raw transaction-type string (as it appears in the source spreadsheet)
to a :class:`~pe_ledger.models.TransactionTypeRule`: the canonical category
and the sign policy applied to the amount. Tables are plain immutable
mappings loaded once per process (or per request) and passed explicitly to
the normalizer.

The built-in table covers the Hebrew transaction types emitted by the
institution's movement reports plus common English equivalents. A JSON file
with a list of ``{"raw_value", "category", "directionality", "display"}``
objects replaces it wholesale.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

from pydantic import TypeAdapter

from .models import DirectionalityRule, TransactionCategory, TransactionTypeRule

_C = TransactionCategory
_D = DirectionalityRule

_DEFAULT_RULES: tuple[TransactionTypeRule, ...] = (
    TransactionTypeRule(
        raw_value="משיכת תשואה",
        category=_C.INCOME_DISTRIBUTION,
        directionality=_D.AS_IS,
        display="Income Distribution",
    ),
    TransactionTypeRule(
        raw_value="משיכה",
        category=_C.WITHDRAWAL,
        directionality=_D.AS_IS,
        display="Withdrawal",
    ),
    TransactionTypeRule(
        raw_value="הפקדה",
        category=_C.DEPOSIT,
        directionality=_D.ALWAYS_NEGATIVE,
        display="Deposit",
    ),
    TransactionTypeRule(
        raw_value="דמי ניהול",
        category=_C.MANAGEMENT_FEE,
        directionality=_D.ALWAYS_NEGATIVE,
        display="Management Fee",
    ),
    TransactionTypeRule(
        raw_value="שינוי שווי שוק",
        category=_C.UNREALIZED_GAIN_LOSS,
        directionality=_D.AS_IS,
        display="Unrealized Gain/Loss",
    ),
    TransactionTypeRule(
        raw_value="Capital Call",
        category=_C.CAPITAL_CALL,
        directionality=_D.ALWAYS_NEGATIVE,
        display="Capital Call",
    ),
    TransactionTypeRule(
        raw_value="Distribution",
        category=_C.DISTRIBUTION,
        directionality=_D.ALWAYS_POSITIVE,
        display="Distribution",
    ),
    TransactionTypeRule(
        raw_value="Income Distribution",
        category=_C.INCOME_DISTRIBUTION,
        directionality=_D.ALWAYS_POSITIVE,
        display="Income Distribution",
    ),
    TransactionTypeRule(
        raw_value="Management Fee",
        category=_C.MANAGEMENT_FEE,
        directionality=_D.ALWAYS_NEGATIVE,
        display="Management Fee",
    ),
    TransactionTypeRule(
        raw_value="Fee",
        category=_C.FEE,
        directionality=_D.ALWAYS_NEGATIVE,
        display="Fee",
    ),
)

_RULES_ADAPTER = TypeAdapter(list[TransactionTypeRule])


def build_table(rules: Iterable[TransactionTypeRule]) -> Mapping[str, TransactionTypeRule]:
    """Return an immutable table keyed by each rule's stripped ``raw_value``.

    A duplicate ``raw_value`` raises ``ValueError``: two rules for the same
    raw type would make the sign of ``amount_normalized`` ambiguous.
    """

    table: dict[str, TransactionTypeRule] = {}
    for rule in rules:
        if rule.raw_value in table:
            raise ValueError(f"duplicate transaction type rule for {rule.raw_value!r}")
        table[rule.raw_value] = rule
    return MappingProxyType(table)


DEFAULT_TRANSACTION_TYPES: Mapping[str, TransactionTypeRule] = build_table(_DEFAULT_RULES)


def load_transaction_types(path: Path | str) -> Mapping[str, TransactionTypeRule]:
    """Load a directionality table from a JSON file.

    Raises ``ValueError`` (pydantic ``ValidationError``) for unknown
    categories or directionality rules and ``OSError`` when the file cannot be
    read.
    """

    text = Path(path).read_text(encoding="utf-8")
    rules = _RULES_ADAPTER.validate_python(json.loads(text))
    return build_table(rules)


def lookup_rule(
    table: Mapping[str, TransactionTypeRule], raw_type: str | None
) -> TransactionTypeRule | None:
    """Find the rule for ``raw_type``: exact stripped key, then case-insensitive."""

    if raw_type is None:
        return None
    key = " ".join(str(raw_type).split())
    if not key:
        return None
    hit = table.get(key)
    if hit is not None:
        return hit
    folded = key.casefold()
    for raw_value, rule in table.items():
        if raw_value.casefold() == folded:
            return rule
    return None


__all__ = [
    "DEFAULT_TRANSACTION_TYPES",
    "build_table",
    "load_transaction_types",
    "lookup_rule",
]
