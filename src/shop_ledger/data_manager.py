"""Data access layer for the shop ledger.

This module reads from and writes to the master ``.xlsx`` workbook that
backs the ledger. Business rules belong in :mod:`shop_ledger.core_logic`.

The public API covers four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Typed rows: :class:`ItemRow` and :class:`SaleEventRow` with the field
   invariants enforced at construction time.
4. Sheet operations: streaming rows out of a sheet and replacing a sheet's
   body wholesale, plus the JSON-compatible snapshot payload.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.styles import Font
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import ITEM_SHEETS, Pool, SheetName, TransferRevenuePolicy


CONFIG_FILE_NAME = "config.ini"
DEFAULT_REPORT_ENDPOINT = "https://api.brevo.com/v3/smtp/email"
DEFAULT_REPORT_TIMEOUT = 15.0
REPORT_API_KEY_ENV = "BREVO_API_KEY"

ITEM_COLUMNS: Tuple[str, ...] = ("Name", "Opening", "UnitPrice", "Inward", "TransferredOut", "Sold")
SALES_LOG_COLUMNS: Tuple[str, ...] = ("Date", "ProductName", "Quantity", "UnitPrice", "Pool", "IsTransfer")
DAILY_UNITS_COLUMNS: Tuple[str, ...] = ("Date", "ProductName", "MrpUnits", "BarUnits")

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.MRP_ITEMS.value: ITEM_COLUMNS,
    SheetName.BAR_ITEMS.value: ITEM_COLUMNS,
    SheetName.SALES_LOG.value: SALES_LOG_COLUMNS,
    SheetName.DAILY_UNITS.value: DAILY_UNITS_COLUMNS,
}


@dataclass(frozen=True)
class ReportSettings:
    """Delivery settings for the daily report e-mail."""

    endpoint: str
    api_key: Optional[str]
    sender: Optional[str]
    recipient: Optional[str]
    timeout_seconds: float = DEFAULT_REPORT_TIMEOUT


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    transfer_revenue_policy: TransferRevenuePolicy
    report: ReportSettings


def _require_count(value: Any, field_name: str, *, positive: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer, got {value!r}")
    if positive and value <= 0:
        raise ValueError(f"{field_name} must be greater than zero, got {value}")
    if value < 0:
        raise ValueError(f"{field_name} must not be negative, got {value}")


def to_decimal(value: Any) -> Decimal:
    """Coerce a price-like value into a :class:`~decimal.Decimal`.

    ``None`` and blank cells become zero. Floats are routed through ``str`` so
    that a cell holding ``2.5`` becomes ``Decimal("2.5")`` rather than its
    binary expansion.

    Raises:
        ValueError: If ``value`` cannot be interpreted as a number.
    """

    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValueError(f"Not a price: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Not a price: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return result


@dataclass(frozen=True)
class ItemRow:
    """Stock and pricing record for one product within one pool.

    Rows are immutable; the ledger replaces a row with an updated copy. The
    constructor rejects negative counters, negative prices and any
    combination of counters whose closing balance would be negative.
    """

    name: str
    opening: int = 0
    unit_price: Decimal = Decimal("0")
    inward: int = 0
    transferred_out: int = 0
    sold: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Item name must be a non-empty string")
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        if self.unit_price < 0:
            raise ValueError(f"unit_price must not be negative, got {self.unit_price}")
        for field_name in ("opening", "inward", "transferred_out", "sold"):
            _require_count(getattr(self, field_name), field_name)
        if self.closing < 0:
            raise ValueError(
                f"Item '{self.name}' would close at {self.closing}; closing balance must not be negative"
            )

    @property
    def closing(self) -> int:
        """Stock remaining after inward, sold and transferred quantities."""
        return self.opening + self.inward - self.sold - self.transferred_out


@dataclass(frozen=True)
class SaleEventRow:
    """One entry of a day's sales log.

    ``unit_price`` is the price at the time the entry was recorded; later
    price changes on the item never touch it.
    """

    product_name: str
    quantity: int
    unit_price: Decimal
    pool: Pool
    is_transfer: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.product_name, str) or not self.product_name.strip():
            raise ValueError("Product name must be a non-empty string")
        _require_count(self.quantity, "quantity", positive=True)
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        if self.unit_price < 0:
            raise ValueError(f"unit_price must not be negative, got {self.unit_price}")
        object.__setattr__(self, "pool", Pool(self.pool))
        object.__setattr__(self, "is_transfer", bool(self.is_transfer))

    @property
    def amount(self) -> Decimal:
        """Value of the entry at its recorded price."""
        return self.quantity * self.unit_price


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the data layer.

    An explicit path is returned as-is without verification. Otherwise the
    search walks from the current working directory up to the filesystem root
    and returns the first ``CONFIG_FILE_NAME`` it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The supplied path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of individual entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_report_settings(parser: configparser.ConfigParser) -> ReportSettings:
    """Read the optional ``[Report]`` section.

    Every option has a fallback so a shop without e-mail delivery still loads.
    A blank ``ApiKey`` falls back to the ``BREVO_API_KEY`` environment
    variable.

    Raises:
        ValueError: If ``TimeoutSeconds`` is not a number.
    """

    api_key = parser.get("Report", "ApiKey", fallback="").strip() or os.environ.get(REPORT_API_KEY_ENV)
    sender = parser.get("Report", "Sender", fallback="").strip() or None
    recipient = parser.get("Report", "Recipient", fallback="").strip() or None
    return ReportSettings(
        endpoint=parser.get("Report", "Endpoint", fallback=DEFAULT_REPORT_ENDPOINT),
        api_key=api_key or None,
        sender=sender,
        recipient=recipient,
        timeout_seconds=parser.getfloat("Report", "TimeoutSeconds", fallback=DEFAULT_REPORT_TIMEOUT),
    )


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Ledger]`` and ``[Report]`` are
    optional. A relative ``DataFile`` is anchored at ``base_path`` (or the
    current working directory) and resolved to an absolute path.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to anchor a relative ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``TransferRevenuePolicy`` names an unknown policy.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    policy_raw = parser.get("Ledger", "TransferRevenuePolicy", fallback=TransferRevenuePolicy.EXCLUDE.value)
    try:
        policy = TransferRevenuePolicy(policy_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown TransferRevenuePolicy: {policy_raw}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        transfer_revenue_policy=policy,
        report=parse_report_settings(parser),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def new_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Build an in-memory workbook with one bold header row per sheet."""

    workbook = openpyxl.Workbook()
    # openpyxl always starts with a default "Sheet".
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def _body_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _replace_body(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> int:
    """Drop every row below the header and append ``rows`` in order."""

    if sheet_name not in workbook.sheetnames:
        sheet = workbook.create_sheet(title=sheet_name)
        sheet.append(list(SHEET_COLUMNS[sheet_name]))
    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        count += 1
    log.debug("Replaced body of sheet '%s' with %d rows", sheet_name, count)
    return count


def iter_items(workbook: Workbook, pool: Pool) -> Iterable[ItemRow]:
    """Iterate over the item rows stored on ``pool``'s sheet.

    Yields:
        ItemRow: One validated record per populated row, in sheet order.
    """

    for raw in _body_rows(workbook, ITEM_SHEETS[Pool(pool)].value):
        yield deserialize_item(raw)


def iter_sale_events(workbook: Workbook) -> Iterable[Tuple[str, SaleEventRow]]:
    """Stream ``(iso_date, event)`` pairs from the ``SalesLog`` sheet."""

    for raw in _body_rows(workbook, SheetName.SALES_LOG.value):
        yield deserialize_sale_event(raw)


def write_items(workbook: Workbook, pool: Pool, items: Iterable[ItemRow]) -> int:
    """Replace ``pool``'s item sheet with ``items``; return the row count."""

    return _replace_body(workbook, ITEM_SHEETS[Pool(pool)].value, (serialize_item(item) for item in items))


def write_sale_events(workbook: Workbook, sales_by_date: Mapping[str, Sequence[SaleEventRow]]) -> int:
    """Replace the ``SalesLog`` sheet with every event, grouped by date."""

    rows = (
        serialize_sale_event(date_iso, event)
        for date_iso in sorted(sales_by_date)
        for event in sales_by_date[date_iso]
    )
    return _replace_body(workbook, SheetName.SALES_LOG.value, rows)


def write_daily_units(workbook: Workbook, units_by_date: Mapping[str, Mapping[str, Mapping[str, int]]]) -> int:
    """Replace the ``DailyUnits`` reporting projection.

    Args:
        units_by_date: ``{iso_date: {product_name: {"mrp": n, "bar": n}}}``.
    """

    rows = (
        [date_iso, product_name, units.get("mrp", 0), units.get("bar", 0)]
        for date_iso in sorted(units_by_date)
        for product_name, units in sorted(units_by_date[date_iso].items())
    )
    return _replace_body(workbook, SheetName.DAILY_UNITS.value, rows)


def serialize_item(record: ItemRow) -> list[object]:
    """Convert an item into the ``ITEM_COLUMNS`` ordering."""

    return [
        record.name,
        record.opening,
        record.unit_price,
        record.inward,
        record.transferred_out,
        record.sold,
    ]


def serialize_sale_event(date_iso: str, record: SaleEventRow) -> list[object]:
    """Convert a sales log entry into the ``SALES_LOG_COLUMNS`` ordering."""

    return [
        date_iso,
        record.product_name,
        record.quantity,
        record.unit_price,
        record.pool.value,
        record.is_transfer,
    ]


def _cell_int(value: object) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Expected a whole number, got {value}")
        return int(value)
    return int(str(value))


def _cell_date(value: object) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value).strip()).isoformat()


def _cell_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def deserialize_item(raw_row: Sequence[object]) -> ItemRow:
    """Convert a raw worksheet row into an :class:`ItemRow`.

    Excel tends to hand back floats for whole numbers and ``None`` for blank
    cells; both are normalised before the row is validated.
    """

    name, opening, unit_price, inward, transferred_out, sold = tuple(raw_row)[:6]
    return ItemRow(
        name=str(name),
        opening=_cell_int(opening),
        unit_price=to_decimal(unit_price),
        inward=_cell_int(inward),
        transferred_out=_cell_int(transferred_out),
        sold=_cell_int(sold),
    )


def deserialize_sale_event(raw_row: Sequence[object]) -> Tuple[str, SaleEventRow]:
    """Convert a raw ``SalesLog`` row into ``(iso_date, SaleEventRow)``."""

    date_raw, product_name, quantity, unit_price, pool, is_transfer = tuple(raw_row)[:6]
    event = SaleEventRow(
        product_name=str(product_name),
        quantity=_cell_int(quantity),
        unit_price=to_decimal(unit_price),
        pool=Pool(str(pool)),
        is_transfer=_cell_bool(is_transfer),
    )
    return _cell_date(date_raw), event


# ---------------------------------------------------------------------------
# Snapshot payload
# ---------------------------------------------------------------------------


def _pool_key(pool: Pool) -> str:
    return pool.value.lower()


def item_to_payload(record: ItemRow) -> Dict[str, Any]:
    return {
        "name": record.name,
        "opening": record.opening,
        "unitPrice": str(record.unit_price),
        "inward": record.inward,
        "transferredOut": record.transferred_out,
        "sold": record.sold,
    }


def item_from_payload(payload: Mapping[str, Any]) -> ItemRow:
    return ItemRow(
        name=payload["name"],
        opening=int(payload.get("opening", 0)),
        unit_price=to_decimal(payload.get("unitPrice")),
        inward=int(payload.get("inward", 0)),
        transferred_out=int(payload.get("transferredOut", 0)),
        sold=int(payload.get("sold", 0)),
    )


def sale_event_to_payload(record: SaleEventRow) -> Dict[str, Any]:
    return {
        "productName": record.product_name,
        "quantity": record.quantity,
        "unitPrice": str(record.unit_price),
        "pool": record.pool.value,
        "isTransfer": record.is_transfer,
    }


def sale_event_from_payload(payload: Mapping[str, Any]) -> SaleEventRow:
    return SaleEventRow(
        product_name=payload["productName"],
        quantity=int(payload["quantity"]),
        unit_price=to_decimal(payload.get("unitPrice")),
        pool=Pool(payload["pool"]),
        is_transfer=bool(payload.get("isTransfer", False)),
    )


def snapshot_payload(
    items: Mapping[Pool, Sequence[ItemRow]],
    sales_by_date: Mapping[str, Sequence[SaleEventRow]],
) -> Dict[str, Any]:
    """Build the JSON-compatible ``{items, salesByDate}`` snapshot.

    Decimals are written as strings so the payload survives ``json.dumps``
    without losing precision.
    """

    return {
        "items": {
            _pool_key(pool): [item_to_payload(item) for item in items.get(pool, ())]
            for pool in Pool
        },
        "salesByDate": {
            date_iso: [sale_event_to_payload(event) for event in sales_by_date[date_iso]]
            for date_iso in sorted(sales_by_date)
        },
    }


def parse_snapshot_payload(
    payload: Mapping[str, Any],
) -> Tuple[Dict[Pool, List[ItemRow]], Dict[str, List[SaleEventRow]]]:
    """Inverse of :func:`snapshot_payload`.

    Raises:
        KeyError: If a required key is missing.
        ValueError: If any row violates the item or event invariants.
    """

    raw_items = payload.get("items", {})
    items = {
        pool: [item_from_payload(entry) for entry in raw_items.get(_pool_key(pool), [])]
        for pool in Pool
    }
    sales_by_date = {
        date.fromisoformat(date_iso).isoformat(): [sale_event_from_payload(entry) for entry in entries]
        for date_iso, entries in payload.get("salesByDate", {}).items()
    }
    return items, sales_by_date
