"""Enumerations and identifiers shared across the shop ledger modules.

The data access layer, the ledger core, the report sender and the CLI all
read pool names, editable field names and sheet titles from here so the
workbook layout and the in-memory model never drift apart.
"""

from __future__ import annotations

from enum import Enum


# Bumped whenever the workbook sheet layout changes.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class Pool(str, Enum):
    """Enumerate the two independent stock/price contexts."""

    MRP = "MRP"
    BAR = "Bar"

    @property
    def other(self) -> "Pool":
        """Return the opposite pool."""
        return Pool.BAR if self is Pool.MRP else Pool.MRP


class ItemField(str, Enum):
    """Enumerate the item fields that may be set directly."""

    OPENING = "opening"
    UNIT_PRICE = "unit_price"
    INWARD = "inward"


class TransferRevenuePolicy(str, Enum):
    """Decide whether transfer events contribute to daily revenue."""

    EXCLUDE = "exclude"
    INCLUDE = "include"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    MRP_ITEMS = "MrpItems"
    BAR_ITEMS = "BarItems"
    SALES_LOG = "SalesLog"
    DAILY_UNITS = "DailyUnits"


ITEM_SHEETS = {
    Pool.MRP: SheetName.MRP_ITEMS,
    Pool.BAR: SheetName.BAR_ITEMS,
}


DEFAULT_PRODUCTS: tuple[str, ...] = (
    "2 Litre Water",
    "1 Liter water",
    "500 ML water",
    "soda 750ml",
    "600ml cool drinks",
    "250ml cool drinks",
    "5rs glass",
    "3rs glass",
    "2rs glass",
    "chips",
    "boti",
    "water packet",
    "mixer",
    "cover big",
    "cover medium",
    "cover small",
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "Pool",
    "ItemField",
    "TransferRevenuePolicy",
    "SheetName",
    "ITEM_SHEETS",
    "DEFAULT_PRODUCTS",
]
