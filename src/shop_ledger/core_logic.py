"""Business logic layer for the shop ledger.

The ledger keeps two parallel stock pools (MRP and Bar) and one sales log per
calendar day. Every mutation in this module validates first, computes all
replacement rows second, and only then assigns them to the
:class:`LedgerStore`, so a rejected call never leaves partial changes behind.
Persistence goes through :mod:`shop_ledger.data_manager` and is triggered by
the caller after a mutation has completed.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import DEFAULT_PRODUCTS, EXPECTED_SCHEMA_VERSION, ItemField, Pool, TransferRevenuePolicy
from .data_manager import ItemRow, SaleEventRow


UNDO_LIMIT = 100
DAY_HISTORY_LIMIT = 20

DateLike = Union[date, str, None]


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a ledger rule."""


class InvalidRequest(BusinessRuleViolation, ValueError):
    """Raised for malformed input such as a bad date or a same-pool transfer."""


class InvalidQuantity(InvalidRequest):
    """Raised when a sale or transfer quantity is not a positive integer."""


class InsufficientStock(BusinessRuleViolation):
    """Raised when a request exceeds an item's closing balance."""


class NotFound(BusinessRuleViolation):
    """Raised when a product, day, or log entry is unknown."""


class NothingToUndo(BusinessRuleViolation):
    """Raised when an undo is requested with an empty history."""


@dataclass(frozen=True)
class LedgerSnapshot:
    """Immutable copy of the whole ledger state."""

    items: Mapping[Pool, Tuple[ItemRow, ...]]
    sales_by_date: Mapping[str, Tuple[SaleEventRow, ...]]


@dataclass
class LedgerStore:
    """Owner of the item pools and the per-date sales logs.

    Item rows and sale events are frozen dataclasses, so a snapshot only needs
    to copy the containers.
    """

    items: Dict[Pool, Dict[str, ItemRow]] = field(default_factory=lambda: {pool: {} for pool in Pool})
    sales_by_date: Dict[str, List[SaleEventRow]] = field(default_factory=dict)
    _undo_stack: List[Tuple[str, LedgerSnapshot]] = field(default_factory=list, repr=False, compare=False)
    _day_history: Dict[str, List[Optional[Tuple[SaleEventRow, ...]]]] = field(
        default_factory=dict, repr=False, compare=False
    )

    @classmethod
    def from_rows(
        cls,
        items: Mapping[Pool, Iterable[ItemRow]],
        sales_by_date: Mapping[str, Iterable[SaleEventRow]],
    ) -> "LedgerStore":
        store = cls()
        for pool in Pool:
            for item in items.get(pool, ()):
                if item.name in store.items[pool]:
                    log.warning("Duplicate %s item '%s'; keeping the last row", pool.value, item.name)
                store.items[pool][item.name] = item
        for date_iso, events in sales_by_date.items():
            store.sales_by_date[date_iso] = list(events)
        return store

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            items={pool: tuple(self.items[pool].values()) for pool in Pool},
            sales_by_date={date_iso: tuple(events) for date_iso, events in self.sales_by_date.items()},
        )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        self.items = {pool: {item.name: item for item in snapshot.items.get(pool, ())} for pool in Pool}
        self.sales_by_date = {date_iso: list(events) for date_iso, events in snapshot.sales_by_date.items()}


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, workbook handle and the ledger loaded from it."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: LedgerStore = field(default_factory=LedgerStore, compare=False)


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling stock from one pool."""

    pool: Pool
    product_name: str
    quantity: Any
    price_override: Optional[Decimal] = None
    sale_date: DateLike = None


@dataclass(frozen=True)
class TransferCommand:
    """User intent for moving stock from one pool to the other."""

    from_pool: Pool
    to_pool: Pool
    product_name: str
    quantity: Any
    transfer_date: DateLike = None


@dataclass(frozen=True)
class AdjustCommand:
    """User intent for setting ``opening``, ``unit_price`` or ``inward``."""

    pool: Pool
    product_name: str
    field: ItemField
    value: Any


@dataclass(frozen=True)
class ProductSummary:
    """Units and revenue for one product on one day."""

    mrp_sold: int = 0
    mrp_transferred: int = 0
    bar_sold: int = 0
    bar_transferred: int = 0
    mrp_revenue: Decimal = Decimal("0")
    bar_revenue: Decimal = Decimal("0")

    @property
    def revenue(self) -> Decimal:
        return self.mrp_revenue + self.bar_revenue


@dataclass(frozen=True)
class DailySummary:
    """Fold of one day's sales log, keyed by product name."""

    per_product: Mapping[str, ProductSummary]
    total_revenue: Decimal

    def totals(self) -> ProductSummary:
        """Collapse every product into a single dashboard row."""
        rows = list(self.per_product.values())
        return ProductSummary(
            mrp_sold=sum(row.mrp_sold for row in rows),
            mrp_transferred=sum(row.mrp_transferred for row in rows),
            bar_sold=sum(row.bar_sold for row in rows),
            bar_transferred=sum(row.bar_transferred for row in rows),
            mrp_revenue=sum((row.mrp_revenue for row in rows), Decimal("0")),
            bar_revenue=sum((row.bar_revenue for row in rows), Decimal("0")),
        )


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration, open the workbook and build the ledger store.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the working
            directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
        ValueError: When a stored row violates the ledger invariants.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = load_store(workbook)
    log.info("Loaded ledger from workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, store=store)


def load_store(workbook: Workbook) -> LedgerStore:
    """Build a :class:`LedgerStore` from the item sheets and the sales log."""
    items = {pool: list(data_manager.iter_items(workbook, pool)) for pool in Pool}
    sales_by_date: Dict[str, List[SaleEventRow]] = {}
    for date_iso, event in data_manager.iter_sale_events(workbook):
        sales_by_date.setdefault(date_iso, []).append(event)
    log.debug(
        "Loaded %d MRP items, %d Bar items and %d sales days",
        len(items[Pool.MRP]),
        len(items[Pool.BAR]),
        len(sales_by_date),
    )
    return LedgerStore.from_rows(items, sales_by_date)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to operate on a workbook with a different schema version.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Write the in-memory ledger into the workbook and save it to disk.

    Every sheet body is replaced, so the last save wins. The ``DailyUnits``
    projection is recomputed from the sales log on each save.
    """
    store = context.store
    for pool in Pool:
        data_manager.write_items(context.workbook, pool, store.items[pool].values())
    data_manager.write_sale_events(context.workbook, store.sales_by_date)
    data_manager.write_daily_units(
        context.workbook,
        {date_iso: daily_units_projection(events) for date_iso, events in store.sales_by_date.items()},
    )
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def resolve_date(candidate: DateLike) -> str:
    """Normalise an optional date into ``YYYY-MM-DD``; ``None`` means today."""

    if candidate is None:
        return datetime.now().date().isoformat()
    if isinstance(candidate, datetime):
        return candidate.date().isoformat()
    if isinstance(candidate, date):
        return candidate.isoformat()
    try:
        return date.fromisoformat(str(candidate).strip()).isoformat()
    except ValueError as exc:
        log.error("Date validation failed: %r", candidate)
        raise InvalidRequest(f"Not an ISO date (YYYY-MM-DD): {candidate!r}") from exc


def require_positive_quantity(quantity: Any) -> int:
    """Return ``quantity`` as an ``int`` after checking it is positive.

    Integral strings such as ``"3"`` are accepted so that raw form input can
    be passed straight through.

    Raises:
        InvalidQuantity: If ``quantity`` is not a whole number above zero.
    """
    if isinstance(quantity, bool):
        value = None
    elif isinstance(quantity, int):
        value = quantity
    elif isinstance(quantity, str):
        try:
            value = int(quantity.strip())
        except ValueError:
            value = None
    elif isinstance(quantity, (float, Decimal)):
        try:
            value = int(quantity) if quantity == int(quantity) else None
        except (ValueError, OverflowError):
            value = None
    else:
        value = None
    if value is None or value <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidQuantity(f"Quantity must be a positive whole number, got {quantity!r}")
    return value


def require_nonnegative_money(amount: Any) -> Decimal:
    """Return ``amount`` as a :class:`Decimal` after checking it is not negative.

    Raises:
        InvalidRequest: If ``amount`` is negative or not a number.
    """
    try:
        value = data_manager.to_decimal(amount)
    except ValueError as exc:
        log.error("Monetary value validation failed: %r", amount)
        raise InvalidRequest(str(exc)) from exc
    if value < Decimal("0"):
        log.error("Monetary value validation failed: %s", value)
        raise InvalidRequest("Amount must be zero or positive")
    return value


def _clamped_count(value: Any) -> int:
    """Interpret a field edit as a whole number, clamping negatives to zero."""

    try:
        number = data_manager.to_decimal(value)
    except ValueError as exc:
        log.error("Field value validation failed: %r", value)
        raise InvalidRequest(f"Not a number: {value!r}") from exc
    return max(0, int(number))


def _clamped_price(value: Any) -> Decimal:
    try:
        number = data_manager.to_decimal(value)
    except ValueError as exc:
        log.error("Price validation failed: %r", value)
        raise InvalidRequest(f"Not a price: {value!r}") from exc
    return max(Decimal("0"), number)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def _push_undo(store: LedgerStore, description: str) -> None:
    store._undo_stack.append((description, store.snapshot()))
    if len(store._undo_stack) > UNDO_LIMIT:
        del store._undo_stack[0]


def _push_day_history(store: LedgerStore, date_iso: str) -> None:
    current = store.sales_by_date.get(date_iso)
    history = store._day_history.setdefault(date_iso, [])
    history.append(tuple(current) if current is not None else None)
    if len(history) > DAY_HISTORY_LIMIT:
        del history[0]


def undo_last(store: LedgerStore) -> str:
    """Restore the state captured before the most recent mutation.

    Returns:
        str: Description of the mutation that was undone.

    Raises:
        NothingToUndo: If no mutation has been recorded.
    """
    if not store._undo_stack:
        raise NothingToUndo("Nothing to undo")
    description, snapshot = store._undo_stack.pop()
    store.restore(snapshot)
    log.info("Undid: %s", description)
    return description


def undo_day(store: LedgerStore, day: DateLike) -> List[SaleEventRow]:
    """Restore one day's sales log to the version before its last change.

    Item counters are left alone, matching the behaviour of day-log editing.

    Raises:
        NothingToUndo: If the day has no recorded history.
    """
    date_iso = resolve_date(day)
    history = store._day_history.get(date_iso)
    if not history:
        raise NothingToUndo(f"No undo history for {date_iso}")
    previous = history.pop()
    if not previous:
        store.sales_by_date.pop(date_iso, None)
    else:
        store.sales_by_date[date_iso] = list(previous)
    log.info("Reverted last change to sales log %s", date_iso)
    return list(previous or ())


# ---------------------------------------------------------------------------
# Item ledger
# ---------------------------------------------------------------------------


def get_item(store: LedgerStore, pool: Pool, product_name: str) -> ItemRow:
    """Return the item row for ``product_name`` in ``pool``.

    Raises:
        NotFound: If the pool holds no such product.
    """
    try:
        return store.items[Pool(pool)][product_name]
    except KeyError as exc:
        log.warning("Item lookup failed for '%s' in pool %s", product_name, pool)
        raise NotFound(f"Unknown {Pool(pool).value} item: {product_name}") from exc


def list_items(store: LedgerStore, pool: Pool) -> List[ItemRow]:
    """Return ``pool``'s items in insertion order."""
    return list(store.items[Pool(pool)].values())


def compute_closing(store: LedgerStore, pool: Pool, product_name: str) -> int:
    """Closing balance: ``opening + inward - sold - transferred_out``.

    Raises:
        NotFound: If the pool holds no such product.
    """
    return get_item(store, pool, product_name).closing


def ensure_item(
    store: LedgerStore,
    pool: Pool,
    product_name: str,
    *,
    unit_price: Any = Decimal("0"),
) -> ItemRow:
    """Return the existing item, or create it with zeroed counters.

    Idempotent: an existing item is returned untouched, whatever
    ``unit_price`` says.
    """
    pool = Pool(pool)
    existing = store.items[pool].get(product_name)
    if existing is not None:
        return existing
    try:
        item = ItemRow(name=product_name, unit_price=require_nonnegative_money(unit_price))
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc
    _push_undo(store, f"Add {pool.value} item {product_name}")
    store.items[pool][product_name] = item
    log.info("Created %s item '%s' (price=%s)", pool.value, product_name, item.unit_price)
    return item


def adjust_field(store: LedgerStore, command: AdjustCommand) -> ItemRow:
    """Set ``opening``, ``unit_price`` or ``inward`` on an existing item.

    Negative input is clamped to zero. Lowering ``opening`` or ``inward``
    below what has already been sold or transferred is refused, because the
    closing balance may never go negative.

    Raises:
        NotFound: If the item does not exist.
        InvalidRequest: If the value is not a number or the field is unknown.
        InsufficientStock: If the edit would make the closing balance negative.
    """
    item = get_item(store, command.pool, command.product_name)
    try:
        target = ItemField(command.field)
    except ValueError as exc:
        raise InvalidRequest(f"Field cannot be set directly: {command.field!r}") from exc

    if target is ItemField.UNIT_PRICE:
        new_value: Any = _clamped_price(command.value)
    else:
        new_value = _clamped_count(command.value)
        committed = item.sold + item.transferred_out
        other = item.inward if target is ItemField.OPENING else item.opening
        if new_value + other < committed:
            log.warning(
                "Refused %s=%s on %s item '%s': %d units already sold or transferred",
                target.value,
                new_value,
                Pool(command.pool).value,
                item.name,
                committed,
            )
            raise InsufficientStock(
                f"Setting {target.value} to {new_value} would leave '{item.name}' below zero"
            )

    updated = replace(item, **{target.value: new_value})
    _push_undo(store, f"Set {target.value} of {item.name}")
    store.items[Pool(command.pool)][item.name] = updated
    log.info(
        "Set %s of %s item '%s' to %s",
        target.value,
        Pool(command.pool).value,
        item.name,
        new_value,
    )
    return updated


# ---------------------------------------------------------------------------
# Sale recorder and transfer engine
# ---------------------------------------------------------------------------


def record_sale(store: LedgerStore, command: SaleCommand) -> SaleEventRow:
    """Sell ``quantity`` units of an item and log the sale for the day.

    The event copies the price in force at the time of sale: the override
    when given, otherwise the item's ``unit_price``.

    Raises:
        NotFound: If the item does not exist.
        InvalidQuantity: If the quantity is not a positive whole number.
        InvalidRequest: If the price override is negative or the date is
            malformed.
        InsufficientStock: If the quantity exceeds the closing balance.
    """
    pool = Pool(command.pool)
    item = get_item(store, pool, command.product_name)
    quantity = require_positive_quantity(command.quantity)
    price = item.unit_price if command.price_override is None else require_nonnegative_money(command.price_override)
    date_iso = resolve_date(command.sale_date)

    if item.closing < quantity:
        log.warning(
            "Refused sale of %d '%s' from %s: only %d in stock",
            quantity,
            item.name,
            pool.value,
            item.closing,
        )
        raise InsufficientStock(f"Only {item.closing} of '{item.name}' left in {pool.value}")

    event = SaleEventRow(product_name=item.name, quantity=quantity, unit_price=price, pool=pool)
    updated = replace(item, sold=item.sold + quantity)

    _push_undo(store, f"Sell {quantity} {item.name} from {pool.value}")
    _push_day_history(store, date_iso)
    store.items[pool][item.name] = updated
    store.sales_by_date.setdefault(date_iso, []).append(event)
    log.info(
        "Recorded %s sale of %d '%s' at %s on %s",
        pool.value,
        quantity,
        item.name,
        price,
        date_iso,
    )
    return event


def transfer(store: LedgerStore, command: TransferCommand) -> SaleEventRow:
    """Move stock from one pool to the other as a single change.

    The source gains ``transferred_out``, the destination gains ``opening``
    and is created on demand. The destination keeps its own price once it has
    one; a zero price is seeded from the source. One ``is_transfer`` event is
    logged against the source pool; nothing is logged for the receipt.

    Raises:
        InvalidRequest: If both pools are the same or the date is malformed.
        InvalidQuantity: If the quantity is not a positive whole number.
        NotFound: If the source item does not exist.
        InsufficientStock: If the quantity exceeds the source closing balance.
    """
    from_pool, to_pool = Pool(command.from_pool), Pool(command.to_pool)
    if from_pool is to_pool:
        log.error("Transfer rejected: source and destination are both %s", from_pool.value)
        raise InvalidRequest("Transfer source and destination pools must differ")
    quantity = require_positive_quantity(command.quantity)
    date_iso = resolve_date(command.transfer_date)
    source = get_item(store, from_pool, command.product_name)

    if source.closing < quantity:
        log.warning(
            "Refused transfer of %d '%s' from %s: only %d in stock",
            quantity,
            source.name,
            from_pool.value,
            source.closing,
        )
        raise InsufficientStock(f"Only {source.closing} of '{source.name}' left in {from_pool.value}")

    destination = store.items[to_pool].get(source.name) or ItemRow(name=source.name)
    destination_price = destination.unit_price if destination.unit_price > 0 else source.unit_price

    new_source = replace(source, transferred_out=source.transferred_out + quantity)
    new_destination = replace(destination, opening=destination.opening + quantity, unit_price=destination_price)
    event = SaleEventRow(
        product_name=source.name,
        quantity=quantity,
        unit_price=source.unit_price,
        pool=from_pool,
        is_transfer=True,
    )

    _push_undo(store, f"Transfer {quantity} {source.name} {from_pool.value}->{to_pool.value}")
    _push_day_history(store, date_iso)
    store.items[from_pool][source.name] = new_source
    store.items[to_pool][source.name] = new_destination
    store.sales_by_date.setdefault(date_iso, []).append(event)
    log.info(
        "Transferred %d '%s' from %s to %s on %s",
        quantity,
        source.name,
        from_pool.value,
        to_pool.value,
        date_iso,
    )
    return event


# ---------------------------------------------------------------------------
# Day-log editing
# ---------------------------------------------------------------------------


def list_sales(store: LedgerStore, day: DateLike = None) -> List[SaleEventRow]:
    """Return a copy of one day's sales log (empty when nothing was logged)."""
    return list(store.sales_by_date.get(resolve_date(day), ()))


def replace_day(store: LedgerStore, day: DateLike, events: Iterable[SaleEventRow]) -> List[SaleEventRow]:
    """Replace a whole day's sales log in one assignment.

    Item counters are not recomputed; the log is a record of what happened,
    edited after the fact.

    Raises:
        InvalidRequest: If an entry is not a :class:`SaleEventRow`.
    """
    date_iso = resolve_date(day)
    new_events = list(events)
    for event in new_events:
        if not isinstance(event, SaleEventRow):
            log.error("Sales log replacement rejected: %r is not an entry", event)
            raise InvalidRequest(f"Not a sales log entry: {event!r}")

    _push_undo(store, f"Edit sales for {date_iso}")
    _push_day_history(store, date_iso)
    if new_events:
        store.sales_by_date[date_iso] = new_events
    else:
        store.sales_by_date.pop(date_iso, None)
    log.info("Replaced sales log %s with %d entries", date_iso, len(new_events))
    return list(new_events)


def remove_sale_entry(store: LedgerStore, day: DateLike, index: int) -> SaleEventRow:
    """Remove one entry from a day's sales log by its position.

    Raises:
        NotFound: If the day has no log or ``index`` is out of range.
    """
    date_iso = resolve_date(day)
    events = store.sales_by_date.get(date_iso)
    if events is None:
        log.warning("No sales log for %s", date_iso)
        raise NotFound(f"No sales logged for {date_iso}")
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(events):
        log.warning("No entry #%r in sales log %s", index, date_iso)
        raise NotFound(f"No entry #{index} in sales log {date_iso}")

    _push_undo(store, f"Remove entry {index} from {date_iso}")
    _push_day_history(store, date_iso)
    remaining = events[:index] + events[index + 1:]
    removed = events[index]
    if remaining:
        store.sales_by_date[date_iso] = remaining
    else:
        # an empty day is not kept, the workbook has no row for it
        store.sales_by_date.pop(date_iso)
    log.info("Removed entry %d ('%s' x%d) from sales log %s", index, removed.product_name, removed.quantity, date_iso)
    return removed


def delete_day(store: LedgerStore, day: DateLike) -> List[SaleEventRow]:
    """Delete every entry logged for a day.

    Raises:
        NotFound: If nothing was logged for the day.
    """
    date_iso = resolve_date(day)
    if date_iso not in store.sales_by_date:
        log.warning("No sales log for %s", date_iso)
        raise NotFound(f"No sales logged for {date_iso}")

    _push_undo(store, f"Delete entire day {date_iso}")
    _push_day_history(store, date_iso)
    removed = store.sales_by_date.pop(date_iso)
    log.info("Deleted sales log %s (%d entries)", date_iso, len(removed))
    return removed


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------


def build_default_store(products: Sequence[str] = DEFAULT_PRODUCTS) -> LedgerStore:
    """Create a store with every product in both pools and no sales."""
    return LedgerStore.from_rows({pool: [ItemRow(name=name) for name in products] for pool in Pool}, {})


def reset_store(store: LedgerStore, products: Sequence[str] = DEFAULT_PRODUCTS) -> None:
    """Replace the whole ledger with the default product list.

    The reset itself can be undone with :func:`undo_last`.
    """
    fresh = build_default_store(products)
    _push_undo(store, "Reset all data")
    store.items = fresh.items
    store.sales_by_date = fresh.sales_by_date
    store._day_history.clear()
    log.info("Reset ledger to %d default products", len(products))


# ---------------------------------------------------------------------------
# Daily aggregator
# ---------------------------------------------------------------------------


def summarize(
    events: Iterable[SaleEventRow],
    policy: TransferRevenuePolicy = TransferRevenuePolicy.EXCLUDE,
) -> DailySummary:
    """Fold a day's sales log into per-product units and revenue.

    Sales add to the pool's sold units and revenue. Transfers add to the
    pool's transferred units; they count toward revenue only under
    ``TransferRevenuePolicy.INCLUDE``. The result does not depend on the
    order of ``events`` and products are keyed in sorted order.
    """
    policy = TransferRevenuePolicy(policy)
    units: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    revenue: Dict[str, Dict[Pool, Decimal]] = defaultdict(lambda: defaultdict(lambda: Decimal("0")))

    for event in events:
        prefix = "mrp" if event.pool is Pool.MRP else "bar"
        counter = units[event.product_name]
        if event.is_transfer:
            counter[f"{prefix}_transferred"] += event.quantity
            if policy is TransferRevenuePolicy.INCLUDE:
                revenue[event.product_name][event.pool] += event.amount
        else:
            counter[f"{prefix}_sold"] += event.quantity
            revenue[event.product_name][event.pool] += event.amount

    per_product = {
        name: ProductSummary(
            mrp_sold=units[name]["mrp_sold"],
            mrp_transferred=units[name]["mrp_transferred"],
            bar_sold=units[name]["bar_sold"],
            bar_transferred=units[name]["bar_transferred"],
            mrp_revenue=revenue[name][Pool.MRP],
            bar_revenue=revenue[name][Pool.BAR],
        )
        for name in sorted(units)
    }
    total_revenue = sum((summary.revenue for summary in per_product.values()), Decimal("0"))
    return DailySummary(per_product=per_product, total_revenue=total_revenue)


def summarize_all(
    store: LedgerStore,
    policy: TransferRevenuePolicy = TransferRevenuePolicy.EXCLUDE,
) -> Dict[str, DailySummary]:
    """Summarise every logged day, newest first."""
    return {
        date_iso: summarize(store.sales_by_date[date_iso], policy)
        for date_iso in sorted(store.sales_by_date, reverse=True)
    }


def daily_units_projection(events: Iterable[SaleEventRow]) -> Dict[str, Dict[str, int]]:
    """Reduce a day's log to ``{product: {"mrp": units, "bar": units}}``.

    Only end-customer sales are counted; this is the shape the report e-mail
    and the ``DailyUnits`` sheet use.
    """
    projection: Dict[str, Dict[str, int]] = {}
    for event in events:
        if event.is_transfer:
            continue
        row = projection.setdefault(event.product_name, {"mrp": 0, "bar": 0})
        row["mrp" if event.pool is Pool.MRP else "bar"] += event.quantity
    return {name: projection[name] for name in sorted(projection)}


# ---------------------------------------------------------------------------
# Snapshot payload
# ---------------------------------------------------------------------------


def snapshot_payload(store: LedgerStore) -> Dict[str, Any]:
    """Return the ``{items: {mrp, bar}, salesByDate}`` payload for ``store``."""
    return data_manager.snapshot_payload(
        {pool: list(store.items[pool].values()) for pool in Pool},
        store.sales_by_date,
    )


def store_from_payload(payload: Mapping[str, Any]) -> LedgerStore:
    """Rebuild a store from :func:`snapshot_payload` output."""
    items, sales_by_date = data_manager.parse_snapshot_payload(payload)
    return LedgerStore.from_rows(items, sales_by_date)
