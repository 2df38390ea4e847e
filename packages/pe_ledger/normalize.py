"""Turn one field-mapped row into a :class:`NormalizedTransaction`.

Each step can fail independently; failures leave the affected output fields
``None`` and add an :class:`~pe_ledger.models.Issue` instead of raising.

1. Parse date and amount.
2. Apply the directionality rule for the raw transaction type.
3. Convert the normalized amount to USD through the rate cache.
4. Derive the investment identifier through the identity strategy.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from .identity import ExactNameIdentity, InvestmentIdentity
from .models import (
    DirectionalityRule,
    DirectionalityTable,
    Issue,
    NormalizedTransaction,
)
from .parsers import currency_to_code, parse_amount, parse_date
from .transaction_types import lookup_rule

_CENT = Decimal("0.01")
_DEFAULT_IDENTITY = ExactNameIdentity()


class RateLookup(Protocol):
    def rate(self, on: Any, from_currency: str, to_currency: str) -> Decimal | None: ...


def _text(value: Any) -> str | None:
    if value is None:
        return None
    s = " ".join(str(value).split())
    return s or None


def apply_directionality(
    amount: Decimal, rule: DirectionalityRule
) -> tuple[Decimal, int | None]:
    """Return ``(normalized_amount, cash_flow_direction)`` for ``amount`` under ``rule``.

    ``as_is`` keeps the sign and derives the direction from it (``None`` for a
    zero amount); the forcing rules fix both sign and direction.
    """

    if rule is DirectionalityRule.ALWAYS_POSITIVE:
        return abs(amount), 1
    if rule is DirectionalityRule.ALWAYS_NEGATIVE:
        return -abs(amount), -1
    if amount > 0:
        return amount, 1
    if amount < 0:
        return amount, -1
    return amount, None


def normalize(
    row: Mapping[str, Any],
    directionality_table: DirectionalityTable,
    date_format: str | None = None,
    *,
    rates: RateLookup | None = None,
    identity: InvestmentIdentity | None = None,
    counterparty_aliases: Mapping[str, str] | None = None,
) -> NormalizedTransaction:
    """Normalize a row keyed by canonical field names.

    Parameters
    ----------
    row:
        Output of :func:`pe_ledger.column_mapping.map_row` (``date``,
        ``amount``, ``currency``, ``transaction_type``, ``investment_name``…).
    directionality_table:
        Raw transaction type → rule mapping.
    date_format:
        Preferred slash-date format for ambiguous dates.
    rates:
        Rate lookup used for USD conversion. Without one, only USD amounts
        convert (at 1); everything else gets an ``amount_usd`` warning.
    identity:
        Investment identity strategy (exact trimmed name by default).
    counterparty_aliases:
        Optional raw → canonical counterparty names.
    """

    issues: list[Issue] = []

    # 1. date + amount
    raw_date = row.get("date")
    date_iso = parse_date(raw_date, date_format)
    if date_iso is None:
        msg = "missing date" if _text(raw_date) is None else "unparseable date"
        issues.append(Issue("date", "error", msg, raw_date))

    raw_amount = row.get("amount")
    amount = parse_amount(raw_amount)
    if amount is None:
        msg = "missing amount" if _text(raw_amount) is None else "unparseable amount"
        issues.append(Issue("amount", "error", msg, raw_amount))

    # 2. directionality
    raw_type = _text(row.get("transaction_type"))
    rule = lookup_rule(directionality_table, raw_type)
    category: str | None = None
    direction: int | None = None
    normalized = amount
    if rule is None:
        msg = "missing transaction type" if raw_type is None else "unknown transaction type"
        issues.append(Issue("transaction_type", "warning", msg, raw_type))
    else:
        category = rule.category.value
        if amount is not None:
            normalized, direction = apply_directionality(amount, rule.directionality)

    # 3. USD conversion
    currency = currency_to_code(row.get("currency"))
    amount_usd: Decimal | None = None
    if normalized is not None and date_iso:
        if currency is None:
            issues.append(Issue("amount_usd", "warning", "missing currency", None))
        else:
            rate = rates.rate(date_iso, currency, "USD") if rates is not None else None
            if rate is None and currency == "USD":
                rate = Decimal(1)
            if rate is not None:
                amount_usd = (normalized * rate).quantize(_CENT, rounding=ROUND_HALF_UP)
            else:
                issues.append(
                    Issue("amount_usd", "warning", "could not convert to USD", currency)
                )

    # 4. identity
    investment_name = _text(row.get("investment_name"))
    resolver = identity if identity is not None else _DEFAULT_IDENTITY
    identifier = resolver.resolve(investment_name)
    if identifier is None:
        issues.append(
            Issue("investment", "warning", "investment not identified", investment_name)
        )

    counterparty = _text(row.get("counterparty"))
    if counterparty is not None and counterparty_aliases:
        counterparty = counterparty_aliases.get(counterparty, counterparty)

    return NormalizedTransaction(
        date_iso=date_iso,
        amount_original=amount,
        amount_normalized=normalized,
        original_currency=currency,
        amount_usd=amount_usd,
        transaction_category=category,
        cash_flow_direction=direction,
        counterparty=counterparty,
        investment_identifier=identifier,
        investment_name=investment_name,
        transaction_type_raw=raw_type,
        description=_text(row.get("description")),
        product_type=_text(row.get("product_type")),
        amount_ils=parse_amount(row.get("amount_ils")),
        exchange_rate_to_ils=parse_amount(row.get("exchange_rate_to_ils")),
        issues=tuple(issues),
    )


@dataclass(frozen=True, slots=True)
class TransactionNormalizer:
    """Bundle of normalization inputs shared across one batch."""

    directionality_table: DirectionalityTable
    rates: RateLookup | None = None
    identity: InvestmentIdentity | None = None
    date_format: str | None = None
    counterparty_aliases: Mapping[str, str] | None = None

    def __call__(self, row: Mapping[str, Any]) -> NormalizedTransaction:
        return normalize(
            row,
            self.directionality_table,
            self.date_format,
            rates=self.rates,
            identity=self.identity,
            counterparty_aliases=self.counterparty_aliases,
        )


__all__ = ["RateLookup", "TransactionNormalizer", "apply_directionality", "normalize"]
