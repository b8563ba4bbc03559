"""Project ledgers reconstructed from allocation events, and catalogue reads."""

from .catalog import ProductCatalogReader, ProductSnapshot
from .reader import (
    AllocationLedgerReader,
    AllocationRecord,
    LedgerWarning,
    ProjectLedger,
    ProjectSnapshot,
)

__all__ = [
    "AllocationLedgerReader",
    "AllocationRecord",
    "LedgerWarning",
    "ProductCatalogReader",
    "ProductSnapshot",
    "ProjectLedger",
    "ProjectSnapshot",
]
