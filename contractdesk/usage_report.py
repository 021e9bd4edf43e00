"""
Excel usage report for Contract Desk.

Exports a tenant's usage snapshot as a formatted workbook with:
- Bold headers
- Fixed column widths
- Rows in dashboard order, with items at their limit highlighted
"""

import logging
from pathlib import Path
from typing import Any, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from .config import OutputConfig
from .models import ContractItemUsage, UsageStats


logger = logging.getLogger(__name__)


class UsageReportError(Exception):
    """Error during usage report generation."""
    pass


COLUMN_CONFIG = [
    {"key": "contract_title", "header": "Contract", "width": 30},
    {"key": "item_text", "header": "Contract Item", "width": 45},
    {"key": "item_type", "header": "Type", "width": 12},
    {"key": "ticket_count", "header": "Tickets", "width": 10},
    {"key": "limit", "header": "Limit", "width": 10},
    {"key": "limit_period", "header": "Period", "width": 14},
    {"key": "usage_percentage", "header": "Usage %", "width": 10},
    {"key": "status", "header": "Status", "width": 14},
    {"key": "contract_item_id", "header": "Item Reference", "width": 50},
]


def usage_status(usage: ContractItemUsage) -> str:
    """Get the status label shown for an item."""
    if usage.is_at_limit:
        return "At limit"
    if usage.is_near_limit:
        return "Near limit"
    if usage.limit:
        return "OK"
    return "No limit"


def usage_to_row(usage: ContractItemUsage) -> list[Any]:
    """
    Convert a ContractItemUsage to a row of values.

    Args:
        usage: The item usage to convert.

    Returns:
        List of cell values matching COLUMN_CONFIG order.
    """
    return [
        usage.contract_title,
        usage.item_text,
        usage.item_type,
        usage.ticket_count,
        usage.limit,
        usage.limit_period,
        round(usage.usage_percentage, 1) if usage.limit else None,
        usage_status(usage),
        usage.contract_item_id,
    ]


class UsageReportGenerator:
    """
    Generator for formatted usage workbooks.

    Produces a "Usage" sheet with one row per contract item and a "Summary"
    sheet with the snapshot totals.
    """

    HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
    HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
    HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)

    CELL_ALIGNMENT = Alignment(vertical="top", wrap_text=True)
    CELL_BORDER = Border(
        left=Side(style="thin", color="D0D0D0"),
        right=Side(style="thin", color="D0D0D0"),
        top=Side(style="thin", color="D0D0D0"),
        bottom=Side(style="thin", color="D0D0D0"),
    )

    ROW_FILL_ODD = PatternFill(start_color="F2F2F2", end_color="F2F2F2", fill_type="solid")
    ROW_FILL_EVEN = PatternFill(start_color="FFFFFF", end_color="FFFFFF", fill_type="solid")
    AT_LIMIT_FILL = PatternFill(start_color="F8D7DA", end_color="F8D7DA", fill_type="solid")
    NEAR_LIMIT_FILL = PatternFill(start_color="FFF3CD", end_color="FFF3CD", fill_type="solid")

    def __init__(self, config: OutputConfig):
        """
        Initialize the generator.

        Args:
            config: Output configuration with file paths.
        """
        self._config = config

    def generate(self, stats: UsageStats, output_path: Optional[Path] = None) -> Path:
        """
        Write a usage snapshot to an Excel file.

        Args:
            stats: Usage snapshot, already in dashboard order.
            output_path: Overrides the configured report path.

        Returns:
            Path to the generated Excel file.

        Raises:
            UsageReportError: If report generation fails.
        """
        try:
            wb = Workbook()
            ws = wb.active
            ws.title = "Usage"

            self._write_headers(ws)
            self._write_data(ws, stats.usage_by_item)
            self._apply_column_widths(ws)
            ws.freeze_panes = "A2"

            self._write_summary(wb.create_sheet("Summary"), stats)

            output_path = output_path or self._config.report_path
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)

            logger.info(f"Usage report saved to: {output_path}")
            return output_path

        except Exception as e:
            logger.error(f"Failed to generate usage report: {e}")
            raise UsageReportError(f"Report generation failed: {e}") from e

    def _write_headers(self, ws: Worksheet) -> None:
        """Write and style header row."""
        for col_idx, col_config in enumerate(COLUMN_CONFIG, 1):
            cell = ws.cell(row=1, column=col_idx, value=col_config["header"])
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = self.HEADER_ALIGNMENT
            cell.border = self.CELL_BORDER

        ws.row_dimensions[1].height = 30

    def _write_data(self, ws: Worksheet, usage_by_item: list[ContractItemUsage]) -> None:
        """Write data rows with styling."""
        for row_idx, usage in enumerate(usage_by_item, 2):
            if usage.is_at_limit:
                fill = self.AT_LIMIT_FILL
            elif usage.is_near_limit:
                fill = self.NEAR_LIMIT_FILL
            else:
                fill = self.ROW_FILL_ODD if row_idx % 2 == 0 else self.ROW_FILL_EVEN

            for col_idx, value in enumerate(usage_to_row(usage), 1):
                cell = ws.cell(row=row_idx, column=col_idx, value=value)
                cell.alignment = self.CELL_ALIGNMENT
                cell.border = self.CELL_BORDER
                cell.fill = fill

    def _write_summary(self, ws: Worksheet, stats: UsageStats) -> None:
        rows = [
            ("Active contract items", stats.total_items),
            ("Items with limits", stats.items_with_limits),
            ("Items at limit", stats.items_at_limit),
            ("Items near limit", stats.items_near_limit),
            ("Tickets this period", stats.total_tickets),
        ]
        for row_idx, (label, value) in enumerate(rows, 1):
            ws.cell(row=row_idx, column=1, value=label).font = Font(bold=True)
            ws.cell(row=row_idx, column=2, value=value)
        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 12

    def _apply_column_widths(self, ws: Worksheet) -> None:
        """Apply column widths from configuration."""
        for col_idx, col_config in enumerate(COLUMN_CONFIG, 1):
            column_letter = get_column_letter(col_idx)
            ws.column_dimensions[column_letter].width = col_config["width"]


def generate_usage_report(
    stats: UsageStats,
    config: OutputConfig,
    output_path: Optional[Path] = None,
) -> Path:
    """
    Convenience function to generate a usage report.

    Args:
        stats: Usage snapshot.
        config: Output configuration.
        output_path: Optional custom output path.

    Returns:
        Path to generated report.
    """
    generator = UsageReportGenerator(config)
    return generator.generate(stats, output_path)
