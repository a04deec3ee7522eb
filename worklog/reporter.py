from __future__ import annotations

import csv
import io
from collections.abc import Sequence
from datetime import datetime
from html import escape

from .errors import ValidationError
from .models import TotalRow, WorkRecord


CSV_HEADER = ["ID", "Date", "StartTime", "EndTime", "DurationMinutes", "Type", "Content"]


def format_duration(total_ms: int) -> str:
    """Render a millisecond duration as HH:MM:SS for the timer display."""
    safe_seconds = max(0, int(total_ms) // 1000)
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def totals_by_date(records: Sequence[WorkRecord]) -> list[TotalRow]:
    totals: dict[str, int] = {}
    for record in records:
        totals[record.date] = totals.get(record.date, 0) + record.duration
    return [TotalRow(label=day, minutes=minutes) for day, minutes in sorted(totals.items())]


def totals_by_type(records: Sequence[WorkRecord]) -> list[TotalRow]:
    totals: dict[str, int] = {}
    for record in records:
        totals[record.type] = totals.get(record.type, 0) + record.duration
    rows = [TotalRow(label=work_type, minutes=minutes) for work_type, minutes in totals.items()]
    rows.sort(key=lambda item: (-item.minutes, item.label))
    return rows


def build_csv(records: Sequence[WorkRecord]) -> bytes:
    if not records:
        raise ValidationError("No records to export")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for record in records:
        writer.writerow(
            [record.id, record.date, record.start_time, record.end_time, record.duration, record.type, record.content]
        )
    # The BOM lets spreadsheet apps detect UTF-8 for the category names.
    return ("\ufeff" + buffer.getvalue()).encode("utf-8")


def build_html_report(records: Sequence[WorkRecord], generated_at: datetime) -> str:
    if not records:
        raise ValidationError("No records to report on")

    total_minutes = sum(record.duration for record in records)
    by_date = totals_by_date(records)
    by_type = totals_by_type(records)

    date_rows = "\n".join(
        f"<tr><td>{escape(row.label)}</td><td>{row.minutes}</td><td>{row.minutes / 60:.1f}</td></tr>"
        for row in by_date
    )
    type_rows = "\n".join(
        f"<tr><td>{escape(row.label)}</td><td>{row.minutes}</td><td>{_share(row.minutes, total_minutes)}</td></tr>"
        for row in by_type
    )
    detail_rows = "\n".join(
        "<tr>"
        f"<td>{escape(record.date)}</td><td>{escape(record.start_time)}</td><td>{escape(record.end_time)}</td>"
        f"<td>{record.duration}</td><td>{escape(record.type)}</td><td>{escape(record.content)}</td>"
        "</tr>"
        for record in records
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Work Log Report</title>
<style>
body {{ font-family: Arial, sans-serif; margin: 20px; }}
table {{ border-collapse: collapse; margin: 16px 0; width: 100%; }}
th, td {{ border-bottom: 1px solid #ddd; padding: 8px; text-align: left; }}
.stat {{ display: inline-block; margin-right: 32px; }}
</style>
</head>
<body>
<h1>Work Log Report</h1>
<p>Generated {escape(generated_at.strftime("%Y-%m-%d %H:%M"))}</p>
<div class="stat"><strong>{len(records)}</strong> records</div>
<div class="stat"><strong>{total_minutes}</strong> minutes</div>
<div class="stat"><strong>{len(by_date)}</strong> days</div>
<h2>By date</h2>
<table>
<tr><th>Date</th><th>Minutes</th><th>Hours</th></tr>
{date_rows}
</table>
<h2>By type</h2>
<table>
<tr><th>Type</th><th>Minutes</th><th>Share</th></tr>
{type_rows}
</table>
<h2>Records</h2>
<table>
<tr><th>Date</th><th>Start</th><th>End</th><th>Minutes</th><th>Type</th><th>Content</th></tr>
{detail_rows}
</table>
</body>
</html>
"""


def _share(minutes: int, total: int) -> str:
    if total <= 0:
        return "0.0%"
    return f"{minutes / total * 100:.1f}%"
