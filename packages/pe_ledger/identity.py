"""Investment identity strategies.

The identifier produced here keys fingerprints and links ledger rows to
``ledger_investments``. Two strategies exist:

- :class:`ExactNameIdentity` (default): the trimmed raw name. Spelling or
  script variants of the same investment stay separate investments.
- :class:`SlugIdentity` (opt-in): resolves raw names to a canonical slug via
  ``ledger_investment_name_mappings`` and then ``ledger_investments.name``.
  Unmapped names resolve to ``None`` (needs review) unless
  ``generate_missing`` is set, in which case :func:`slugify` is used.

Switching strategy on an existing ledger changes every fingerprint, so
previously imported rows will no longer match as exact duplicates.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ledger import Investment, InvestmentNameMapping

from .logging_setup import get_logger
from .persistence import upsert_name_mapping

logger = get_logger("pe_ledger.identity")

_NON_SLUG_RE = re.compile(r"[^a-z0-9\s-]")
_HYPHEN_RE = re.compile(r"[\s-]+")


class InvestmentIdentity(Protocol):
    def resolve(self, raw_name: str | None) -> str | None: ...


def slugify(name: str) -> str:
    """Lowercase ASCII slug: accents folded, other scripts dropped, hyphen-joined.

    >>> slugify("Faro-Point  FRG-X")
    'faro-point-frg-x'
    >>> slugify("Café Crème Fund")
    'cafe-creme-fund'
    """

    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    s = _NON_SLUG_RE.sub("", folded.strip().lower())
    return _HYPHEN_RE.sub("-", s).strip("-")


class ExactNameIdentity:
    """Identifier = raw name with surrounding whitespace removed."""

    def resolve(self, raw_name: str | None) -> str | None:
        if raw_name is None:
            return None
        s = str(raw_name).strip()
        return s or None


class SlugIdentity:
    """Resolve raw names to canonical slugs using the ledger's mapping tables.

    Lookups are memoized per instance; build a new instance per request so
    mapping edits are picked up.
    """

    def __init__(self, session: Session, *, generate_missing: bool = False) -> None:
        self._session = session
        self._generate_missing = generate_missing
        self._memo: dict[str, str | None] = {}

    def resolve(self, raw_name: str | None) -> str | None:
        if raw_name is None:
            return None
        name = str(raw_name).strip()
        if not name:
            return None
        if name in self._memo:
            return self._memo[name]

        slug = self._session.execute(
            select(InvestmentNameMapping.investment_slug).where(
                InvestmentNameMapping.raw_name == name
            )
        ).scalar_one_or_none()
        if slug is None:
            slug = self._session.execute(
                select(Investment.slug).where(Investment.name == name, Investment.slug.isnot(None))
            ).scalars().first()
        if slug is None and self._generate_missing:
            slug = slugify(name) or None
        if slug is None:
            logger.info("identity:unmapped_name name=%r", name)
        self._memo[name] = slug
        return slug


def map_investment_name(session: Session, raw_name: str, slug: str) -> str:
    """Record that ``raw_name`` refers to the investment with ``slug``.

    ``slug`` is normalized with :func:`slugify`; a value that normalizes to an
    empty string raises ``ValueError``.
    """

    canonical = slugify(slug)
    if not canonical:
        raise ValueError(f"slug {slug!r} is empty after normalization")
    if not raw_name or not raw_name.strip():
        raise ValueError("raw_name must be non-empty")
    upsert_name_mapping(session, raw_name, canonical)
    return canonical


__all__ = [
    "ExactNameIdentity",
    "InvestmentIdentity",
    "SlugIdentity",
    "map_investment_name",
    "slugify",
]
