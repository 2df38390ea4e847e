from __future__ import annotations

from pathlib import Path

import pytest

from db.client import session_scope
from pe_ledger.identity import ExactNameIdentity, SlugIdentity, map_investment_name, slugify
from pe_ledger.persistence import ensure_investment
from tests.helpers.db import bootstrap_sqlite_db


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Faro-Point  FRG-X", "faro-point-frg-x"),
        ("Café Crème Fund", "cafe-creme-fund"),
        ("  Fund  (II) L.P. ", "fund-ii-lp"),
        ("קרן אלפא", ""),
    ],
)
def test_slugify(raw: str, expected: str) -> None:
    assert slugify(raw) == expected


def test_exact_identity_trims_only() -> None:
    identity = ExactNameIdentity()
    assert identity.resolve("  Fund A  ") == "Fund A"
    assert identity.resolve("fund a") == "fund a"
    assert identity.resolve("   ") is None
    assert identity.resolve(None) is None


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


def test_slug_identity_uses_name_mappings_first(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        assert map_investment_name(session, " Fund A Ltd ", "Fund A") == "fund-a"
        ensure_investment(session, "fund-b", name="Fund B", slug="fund-b")

        identity = SlugIdentity(session)
        assert identity.resolve("Fund A Ltd") == "fund-a"
        assert identity.resolve("Fund B") == "fund-b"
        assert identity.resolve("Unmapped Fund") is None
        assert identity.resolve("") is None


def test_slug_identity_can_generate_missing_slugs(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        identity = SlugIdentity(session, generate_missing=True)
        assert identity.resolve("Brand New Fund") == "brand-new-fund"
        assert identity.resolve("קרן") is None


def test_remapping_a_name_replaces_the_slug(db_url: str) -> None:
    with session_scope(database_url=db_url) as session:
        map_investment_name(session, "Fund A", "first")
        map_investment_name(session, "Fund A", "second")

    with session_scope(database_url=db_url) as session:
        assert SlugIdentity(session).resolve("Fund A") == "second"


@pytest.mark.parametrize(("raw_name", "slug"), [("Fund A", "!!!"), ("  ", "fund-a")])
def test_map_investment_name_validation(db_url: str, raw_name: str, slug: str) -> None:
    with session_scope(database_url=db_url) as session:
        with pytest.raises(ValueError):
            map_investment_name(session, raw_name, slug)
