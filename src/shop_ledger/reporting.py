"""Daily sales report e-mail.

Builds an HTML table of units sold per product and pool for one day and
hands it to a transactional e-mail HTTP API. Delivery failures are returned
to the caller as a :class:`ReportResult`; nothing is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Iterable, Mapping, Tuple

import requests

from . import log
from .core_logic import daily_units_projection
from .data_manager import ReportSettings, SaleEventRow


@dataclass(frozen=True)
class ReportResult:
    """Outcome of a delivery attempt, with a message fit to show a user."""

    success: bool
    message: str


def build_report_html(
    date_iso: str, projection: Mapping[str, Mapping[str, int]], shop_name: str = ""
) -> Tuple[str, int]:
    """Render the report table.

    Args:
        date_iso (str): Day being reported.
        projection: ``{product_name: {"mrp": units, "bar": units}}``.
        shop_name (str): Prefixed to the heading when not empty.

    Returns:
        tuple[str, int]: The HTML body and the total units across both pools.
    """

    heading = f"Daily Sales Report - {date_iso}"
    if shop_name:
        heading = f"{shop_name} - {heading}"
    lines = [
        f"<h2>{escape(heading)}</h2>",
        '<table border="1" cellpadding="8" cellspacing="0" style="border-collapse: collapse;">',
        '<tr style="background:#eef"><th>Product</th><th>MRP Sales</th><th>Bar Sales</th></tr>',
    ]
    total_units = 0
    for product_name, units in projection.items():
        mrp_units = int(units.get("mrp", 0) or 0)
        bar_units = int(units.get("bar", 0) or 0)
        lines.append(
            f"<tr><td>{escape(product_name)}</td><td>{mrp_units}</td><td>{bar_units}</td></tr>"
        )
        total_units += mrp_units + bar_units
    lines.append("</table>")
    lines.append(f"<p><b>Total Units Sold:</b> {total_units}</p>")
    return "\n".join(lines), total_units


def build_email_payload(settings: ReportSettings, date_iso: str, html: str, total_units: int) -> dict:
    return {
        "sender": {"email": settings.sender},
        "to": [{"email": settings.recipient}],
        "subject": f"Daily Sales Report - {date_iso} (Units: {total_units})",
        "htmlContent": html,
    }


def send_daily_report(
    settings: ReportSettings, date_iso: str, events: Iterable[SaleEventRow], shop_name: str = ""
) -> ReportResult:
    """Build and deliver the report for ``date_iso``.

    Returns a failed :class:`ReportResult` when the day has no entries, when
    delivery is not configured, or when the HTTP call fails.
    """

    events = list(events)
    if not events:
        log.warning("No sales logged for %s; report not sent", date_iso)
        return ReportResult(False, "No sales for this date")

    missing = [
        option
        for option, value in (("ApiKey", settings.api_key), ("Sender", settings.sender), ("Recipient", settings.recipient))
        if not value
    ]
    if missing:
        log.error("Report delivery is not configured; missing %s", ", ".join(missing))
        return ReportResult(False, f"Report delivery not configured (missing {', '.join(missing)})")

    html, total_units = build_report_html(date_iso, daily_units_projection(events), shop_name)
    payload = build_email_payload(settings, date_iso, html, total_units)
    headers = {
        "api-key": settings.api_key,
        "accept": "application/json",
        "content-type": "application/json",
    }

    log.info("Sending daily report for %s to %s", date_iso, settings.recipient)
    try:
        response = requests.post(settings.endpoint, json=payload, headers=headers, timeout=settings.timeout_seconds)
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        log.error("Daily report for %s failed: %s", date_iso, exc)
        return ReportResult(False, f"Email failed: {exc}")

    log.info("Daily report for %s sent (%d units)", date_iso, total_units)
    return ReportResult(True, "Email sent")
