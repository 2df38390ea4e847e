"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger domain models used by ``pe_ledger``.
"""

from .ledger import Base, ExchangeRate, Investment, InvestmentNameMapping, LedgerTransaction

__all__ = [
    "Base",
    "ExchangeRate",
    "Investment",
    "InvestmentNameMapping",
    "LedgerTransaction",
]
