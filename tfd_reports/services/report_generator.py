"""
TFD Report Scheduling
Report Generator.

The execution coordinator only depends on the ``ReportGenerator`` interface.
``TabularReportGenerator`` is the default implementation: it asks a row
provider for the dataset of a report type and renders it to a file under
REPORT_OUTPUT_DIR.

Row providers:
    Data for users, municipalities, TFD requests and access logs lives in the
    host application. It plugs its queries in with the registry decorator:

        @register_row_provider("tfd_requests")
        def tfd_request_rows(params: TfdRequestsReportParams) -> ReportDataset:
            ...

    The built-in providers return the column layout with no rows.

Formats:
    csv    ';'-delimited, UTF-8 with BOM so spreadsheet tools open it as-is
    excel  openpyxl workbook with a styled, frozen header row
    pdf    print-ready HTML document (browser "print to PDF")
"""

from __future__ import annotations

import csv
import html
import io
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from flask import current_app, has_app_context
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from tfd_reports.core.exceptions import GenerationError, ValidationError
from tfd_reports.services.report_params import ReportParameters, parse_parameters

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="4F81BD", end_color="4F81BD", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

FORMAT_FILES = {
    "csv": ("csv", "text/csv"),
    "excel": ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
    "pdf": ("html", "text/html"),
}


@dataclass
class ReportDataset:
    """Rows of one report plus their column layout."""

    title: str
    columns: list[tuple[str, str]]
    rows: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class GeneratedReport:
    """A rendered report artifact."""

    reference: str
    filename: str
    mimetype: str
    content: bytes
    row_count: int = 0


class ReportGenerator(ABC):
    """Interface consumed by the execution coordinator."""

    @abstractmethod
    def generate(self, report_type: str, parameters: dict | None,
                 output_format: str) -> GeneratedReport:
        """
        Produce the report artifact.

        Returns:
            GeneratedReport whose ``reference`` is stored on the execution.

        Raises:
            GenerationError: The report could not be produced.
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════
#  Row provider registry
# ═══════════════════════════════════════════════════════════════════════════

RowProvider = Callable[[ReportParameters], ReportDataset]

_row_providers: dict[str, RowProvider] = {}


def register_row_provider(report_type: str):
    """Decorator to register the dataset builder of a report type."""
    def decorator(fn: RowProvider) -> RowProvider:
        _row_providers[report_type] = fn
        return fn
    return decorator


def get_row_providers() -> dict[str, RowProvider]:
    return dict(_row_providers)


@register_row_provider("users")
def _users_rows(params) -> ReportDataset:
    return ReportDataset(
        title="Users",
        columns=[("name", "Name"), ("email", "E-mail"), ("profile_type", "Profile"),
                 ("municipality", "Municipality"), ("active", "Active"),
                 ("created_at", "Created at")],
    )


@register_row_provider("municipalities")
def _municipalities_rows(params) -> ReportDataset:
    return ReportDataset(
        title="Municipalities",
        columns=[("name", "Name"), ("state", "State"), ("status", "Status"),
                 ("contract_expires_at", "Contract expires"), ("users", "Users")],
    )


@register_row_provider("tfd_requests")
def _tfd_requests_rows(params) -> ReportDataset:
    return ReportDataset(
        title="TFD Requests",
        columns=[("protocol", "Protocol"), ("patient", "Patient"),
                 ("municipality", "Municipality"), ("care_type", "Care type"),
                 ("status", "Status"), ("requested_at", "Requested at")],
    )


@register_row_provider("access_logs")
def _access_logs_rows(params) -> ReportDataset:
    return ReportDataset(
        title="Access Logs",
        columns=[("user", "User"), ("municipality", "Municipality"),
                 ("action", "Action"), ("ip_address", "IP address"),
                 ("accessed_at", "Accessed at")],
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Renderers
# ═══════════════════════════════════════════════════════════════════════════

def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return value


def render_csv(dataset: ReportDataset) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=";")
    writer.writerow([header for _key, header in dataset.columns])
    for row in dataset.rows:
        writer.writerow([_cell(row.get(key)) for key, _header in dataset.columns])
    return buf.getvalue().encode("utf-8-sig")


def render_excel(dataset: ReportDataset) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = dataset.title[:31] or "Report"

    for col, (_key, header) in enumerate(dataset.columns, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(vertical="center", horizontal="left")
        ws.column_dimensions[get_column_letter(col)].width = 20

    for row_idx, row in enumerate(dataset.rows, 2):
        for col, (key, _header) in enumerate(dataset.columns, 1):
            cell = ws.cell(row=row_idx, column=col, value=_cell(row.get(key)))
            cell.border = THIN_BORDER
            cell.alignment = Alignment(vertical="center", horizontal="left", wrap_text=True)

    ws.freeze_panes = "A2"
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def render_html(dataset: ReportDataset, parameters: ReportParameters) -> bytes:
    """Print-ready HTML with inline CSS, suitable for PDF conversion."""
    head = "".join(f"<th>{html.escape(header)}</th>" for _key, header in dataset.columns)
    body = ""
    for row in dataset.rows:
        cells = "".join(
            f"<td>{html.escape(str(_cell(row.get(key))))}</td>" for key, _header in dataset.columns
        )
        body += f"<tr>{cells}</tr>\n"
    if not dataset.rows:
        body = f'<tr><td colspan="{len(dataset.columns)}" class="empty">No records found</td></tr>'

    start = getattr(parameters, "start_date", None)
    end = getattr(parameters, "end_date", None)
    period = (
        f"Period: {start.strftime('%d/%m/%Y') if start else 'Start'}"
        f" to {end.strftime('%d/%m/%Y') if end else 'Current'}"
    )
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    title = html.escape(dataset.title)

    document = f"""<!DOCTYPE html>
<html><head>
<meta charset="utf-8">
<title>{title} Report</title>
<style>
    body {{ font-family: 'Segoe UI', Arial, sans-serif; margin: 40px; color: #333; }}
    h1 {{ color: #1F3A5F; margin-bottom: 4px; }}
    .meta {{ color: #666; font-size: 13px; margin-bottom: 24px; }}
    table {{ border-collapse: collapse; width: 100%; margin: 16px 0; }}
    th {{ background: #4F81BD; color: #fff; padding: 10px 12px; text-align: left; }}
    td {{ padding: 8px 12px; border-bottom: 1px solid #e0e0e0; }}
    td.empty {{ text-align: center; color: #999; }}
    @media print {{ body {{ margin: 20px; }} }}
</style>
</head><body>
<h1>{title} Report</h1>
<p class="meta">{html.escape(period)} &middot; Generated {generated} &middot; {len(dataset.rows)} records</p>
<table>
<thead><tr>{head}</tr></thead>
<tbody>
{body}
</tbody>
</table>
</body></html>
"""
    return document.encode("utf-8")


# ═══════════════════════════════════════════════════════════════════════════
#  Default generator
# ═══════════════════════════════════════════════════════════════════════════

class TabularReportGenerator(ReportGenerator):
    """Render registered row providers to CSV / Excel / HTML files."""

    def __init__(self, output_dir: str | os.PathLike | None = None,
                 providers: dict[str, RowProvider] | None = None) -> None:
        self._output_dir = output_dir
        self._providers = providers

    @property
    def output_dir(self) -> Path:
        if self._output_dir is not None:
            return Path(self._output_dir)
        if has_app_context():
            return Path(current_app.config["REPORT_OUTPUT_DIR"])
        raise GenerationError("REPORT_OUTPUT_DIR is not configured")

    def generate(self, report_type: str, parameters: dict | None,
                 output_format: str) -> GeneratedReport:
        if output_format not in FORMAT_FILES:
            raise GenerationError(f"Unsupported output format: {output_format}", report_type)
        try:
            params = parse_parameters(report_type, parameters)
        except ValidationError as exc:
            raise GenerationError(f"Invalid stored parameters: {exc}", report_type) from exc

        providers = self._providers if self._providers is not None else _row_providers
        provider = providers.get(report_type)
        if provider is None:
            raise GenerationError(f"No data provider registered for report type: {report_type}",
                                  report_type)

        dataset = provider(params)
        try:
            if output_format == "csv":
                content = render_csv(dataset)
            elif output_format == "excel":
                content = render_excel(dataset)
            else:
                content = render_html(dataset, params)
        except (ValueError, TypeError) as exc:
            raise GenerationError(f"Could not render {output_format} report: {exc}",
                                  report_type) from exc

        extension, mimetype = FORMAT_FILES[output_format]
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
        filename = f"report_{report_type}_{stamp}_{uuid.uuid4().hex[:6]}.{extension}"

        try:
            target_dir = self.output_dir
            target_dir.mkdir(parents=True, exist_ok=True)
            (target_dir / filename).write_bytes(content)
        except OSError as exc:
            raise GenerationError(f"Could not store report file: {exc}", report_type) from exc

        logger.info("Generated %s report %s (%d rows, %d bytes)",
                    report_type, filename, len(dataset.rows), len(content))
        return GeneratedReport(
            reference=filename,
            filename=filename,
            mimetype=mimetype,
            content=content,
            row_count=len(dataset.rows),
        )
