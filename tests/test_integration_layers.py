"""Integration tests running the ledger against a real workbook on disk.

These scenarios cover how the data access layer, the ledger core and the CLI
collaborate: every mutation is persisted, reloaded and checked again so the
tests mirror one CLI invocation per action.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from shop_ledger import cli, core_logic, data_manager, reporting, setup_workbook
from shop_ledger.constants import DEFAULT_PRODUCTS, ItemField, Pool, SheetName, TransferRevenuePolicy


DAY = "2024-05-01"


def _stock_chips(context: core_logic.RuntimeContext) -> None:
    """Give MRP chips an opening of 10 at 20 each through the core."""

    core_logic.adjust_field(context.store, core_logic.AdjustCommand(Pool.MRP, "chips", ItemField.OPENING, 10))
    core_logic.adjust_field(context.store, core_logic.AdjustCommand(Pool.MRP, "chips", ItemField.UNIT_PRICE, "20"))


def test_sale_and_transfer_survive_reload(runtime_context, config_file, set_fixed_datetime):
    """Sell, transfer, persist and reload; balances and the log must match."""

    set_fixed_datetime(datetime(2024, 5, 1, 21, 0))
    context = runtime_context
    _stock_chips(context)

    core_logic.record_sale(context.store, core_logic.SaleCommand(Pool.MRP, "chips", 3))
    core_logic.transfer(context.store, core_logic.TransferCommand(Pool.MRP, Pool.BAR, "chips", 4))
    before = core_logic.snapshot_payload(context.store)

    core_logic.persist_context(context)
    context = core_logic.load_runtime_context(config_file)

    mrp = core_logic.get_item(context.store, Pool.MRP, "chips")
    bar = core_logic.get_item(context.store, Pool.BAR, "chips")
    assert (mrp.opening, mrp.sold, mrp.transferred_out, mrp.closing) == (10, 3, 4, 3)
    assert (bar.opening, bar.unit_price, bar.closing) == (4, Decimal("20"), 4)
    assert [event.is_transfer for event in core_logic.list_sales(context.store, DAY)] == [False, True]
    assert core_logic.snapshot_payload(context.store) == before

    summary = core_logic.summarize(core_logic.list_sales(context.store, DAY), context.settings.transfer_revenue_policy)
    assert summary.total_revenue == Decimal("60")

    units_sheet = context.workbook[SheetName.DAILY_UNITS.value]
    assert list(units_sheet.iter_rows(min_row=2, values_only=True)) == [(DAY, "chips", 3, 0)]


def test_item_order_is_preserved_on_disk(runtime_context, config_file):
    context = runtime_context
    core_logic.ensure_item(context.store, Pool.BAR, "lemon soda", unit_price="30")

    core_logic.persist_context(context)
    context = core_logic.load_runtime_context(config_file)

    names = [item.name for item in core_logic.list_items(context.store, Pool.BAR)]
    assert names == [*DEFAULT_PRODUCTS, "lemon soda"]
    assert [item.name for item in core_logic.list_items(context.store, Pool.MRP)] == list(DEFAULT_PRODUCTS)


def test_day_edits_persist_without_touching_counters(runtime_context, config_file):
    context = runtime_context
    _stock_chips(context)
    for quantity in (1, 2, 3):
        core_logic.record_sale(context.store, core_logic.SaleCommand(Pool.MRP, "chips", quantity, sale_date=DAY))
    core_logic.record_sale(context.store, core_logic.SaleCommand(Pool.MRP, "chips", 1, sale_date="2024-05-02"))

    core_logic.remove_sale_entry(context.store, DAY, 1)
    core_logic.delete_day(context.store, "2024-05-02")
    core_logic.persist_context(context)
    context = core_logic.load_runtime_context(config_file)

    assert [event.quantity for event in core_logic.list_sales(context.store, DAY)] == [1, 3]
    assert "2024-05-02" not in context.store.sales_by_date
    assert core_logic.get_item(context.store, Pool.MRP, "chips").sold == 7


def test_removing_a_days_only_entry_round_trips(runtime_context, config_file):
    context = runtime_context
    _stock_chips(context)
    core_logic.record_sale(context.store, core_logic.SaleCommand(Pool.MRP, "chips", 2, sale_date=DAY))

    core_logic.remove_sale_entry(context.store, DAY, 0)
    before = context.store.snapshot()
    core_logic.persist_context(context)
    reloaded = core_logic.load_runtime_context(config_file)

    assert DAY not in reloaded.store.sales_by_date
    assert reloaded.store.snapshot() == before


def test_include_policy_from_config(config_factory):
    bundle = config_factory(policy="include")
    context = core_logic.load_runtime_context(bundle.config_path)
    assert context.settings.transfer_revenue_policy is TransferRevenuePolicy.INCLUDE

    _stock_chips(context)
    core_logic.record_sale(context.store, core_logic.SaleCommand(Pool.MRP, "chips", 1, sale_date=DAY))
    core_logic.transfer(context.store, core_logic.TransferCommand(Pool.MRP, Pool.BAR, "chips", 2, transfer_date=DAY))

    summary = core_logic.summarize_all(context.store, context.settings.transfer_revenue_policy)[DAY]
    assert summary.total_revenue == Decimal("60")


def test_load_rejects_corrupted_item_rows(config_factory):
    """A stored row whose closing balance is negative must not load."""

    bundle = config_factory()
    workbook = data_manager.open_workbook(bundle.workbook_path)
    workbook[SheetName.MRP_ITEMS.value].append(["broken", 1, 0, 0, 0, 5])
    data_manager.save_workbook(workbook, bundle.workbook_path)

    with pytest.raises(ValueError):
        core_logic.load_runtime_context(bundle.config_path)


# ---------------------------------------------------------------------------
# CLI end to end
# ---------------------------------------------------------------------------


def _run(config_path, *argv: str) -> int:
    return cli.main(["--config", str(config_path), *argv])


def test_cli_full_day(config_file, capsys):
    assert _run(config_file, "set", "--pool", "MRP", "--name", "chips", "--field", "opening", "--value", "10") == 0
    assert _run(config_file, "set", "--pool", "mrp", "--name", "chips", "--field", "unit-price", "--value", "20") == 0
    assert _run(config_file, "sale", "--pool", "MRP", "--name", "chips", "--quantity", "3", "--date", DAY) == 0
    assert _run(config_file, "transfer", "--name", "chips", "--quantity", "4", "--date", DAY) == 0
    assert _run(config_file, "sale", "--pool", "MRP", "--name", "chips", "--quantity", "8", "--date", DAY) == 2
    assert _run(config_file, "sale", "--pool", "MRP", "--name", "nothing", "--quantity", "1") == 2
    capsys.readouterr()

    assert _run(config_file, "summary", "--date", DAY) == 0
    out = capsys.readouterr().out
    assert "Total revenue: 60" in out

    context = core_logic.load_runtime_context(config_file)
    assert core_logic.compute_closing(context.store, Pool.MRP, "chips") == 3
    assert core_logic.get_item(context.store, Pool.BAR, "chips").opening == 4


def test_cli_add_item_and_remove_entry(config_file):
    assert _run(config_file, "add-item", "--pool", "Bar", "--name", "tonic", "--price", "35") == 0
    assert _run(config_file, "set", "--pool", "Bar", "--name", "tonic", "--field", "inward", "--value", "6") == 0
    assert _run(config_file, "sale", "--pool", "Bar", "--name", "tonic", "--quantity", "2", "--date", DAY) == 0
    assert _run(config_file, "sale", "--pool", "Bar", "--name", "tonic", "--quantity", "1", "--date", DAY) == 0
    assert _run(config_file, "remove-entry", "--date", DAY, "--index", "0") == 0
    assert _run(config_file, "remove-entry", "--date", DAY, "--index", "5") == 2

    context = core_logic.load_runtime_context(config_file)
    assert [event.quantity for event in core_logic.list_sales(context.store, DAY)] == [1]

    assert _run(config_file, "delete-day", "--date", DAY) == 0
    assert _run(config_file, "delete-day", "--date", DAY) == 2


def test_cli_reset_restores_defaults(config_file):
    assert _run(config_file, "add-item", "--pool", "MRP", "--name", "tonic") == 0
    assert _run(config_file, "reset") == 2
    assert _run(config_file, "reset", "--yes") == 0

    context = core_logic.load_runtime_context(config_file)
    for pool in Pool:
        assert [item.name for item in core_logic.list_items(context.store, pool)] == list(DEFAULT_PRODUCTS)
    assert context.store.sales_by_date == {}


def test_cli_export_round_trips(config_file, tmp_path):
    _run(config_file, "set", "--pool", "MRP", "--name", "boti", "--field", "opening", "--value", "5")
    _run(config_file, "sale", "--pool", "MRP", "--name", "boti", "--quantity", "2", "--date", DAY)
    output = tmp_path / "export.json"

    assert _run(config_file, "export", "--output", str(output)) == 0

    exported = core_logic.store_from_payload(json.loads(output.read_text(encoding="utf-8")))
    assert exported == core_logic.load_runtime_context(config_file).store


def test_cli_send_report(config_file, monkeypatch):
    response = Mock(name="response")
    post = Mock(return_value=response)
    monkeypatch.setattr(reporting.requests, "post", post)

    assert _run(config_file, "send-report", "--date", DAY) == cli.EXIT_REPORT_FAILED
    post.assert_not_called()

    _run(config_file, "set", "--pool", "Bar", "--name", "mixer", "--field", "inward", "--value", "5")
    _run(config_file, "sale", "--pool", "Bar", "--name", "mixer", "--quantity", "3", "--date", DAY)
    assert _run(config_file, "send-report", "--date", DAY) == 0

    payload = post.call_args.kwargs["json"]
    assert payload["subject"] == f"Daily Sales Report - {DAY} (Units: 3)"
    assert "<td>mixer</td><td>0</td><td>3</td>" in payload["htmlContent"]
    assert f"<h2>Test Shop - Daily Sales Report - {DAY}</h2>" in payload["htmlContent"]


# ---------------------------------------------------------------------------
# Workbook setup script
# ---------------------------------------------------------------------------


def test_setup_script_creates_and_protects_workbook(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = data/ledger.xlsx\nShopName = S\nSchemaVersion = 1.0.0\n")

    assert setup_workbook.main(["--config", str(config_path)]) == 0
    workbook_path = tmp_path / "data" / "ledger.xlsx"
    assert workbook_path.exists()

    assert setup_workbook.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out

    assert setup_workbook.main(["--config", str(config_path), "--force"]) == 0
    context = core_logic.load_runtime_context(config_path)
    assert len(core_logic.list_items(context.store, Pool.BAR)) == len(DEFAULT_PRODUCTS)


def test_setup_script_reports_missing_config(tmp_path):
    assert setup_workbook.main(["--config", str(tmp_path / "missing.ini")]) == 1
