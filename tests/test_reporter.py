from datetime import datetime

import pytest

from worklog.errors import ValidationError
from worklog.models import TotalRow, WorkRecord
from worklog.reporter import build_csv, build_html_report, format_duration, totals_by_date, totals_by_type


def sample_records() -> list[WorkRecord]:
    return [
        WorkRecord(101, "2026-02-01", "09:52", "11:53", 121, 'Wrote "plan", reviewed', "工作"),
        WorkRecord(102, "2026-02-01", "12:00", "12:40", 40, "lunch", "生活"),
        WorkRecord(103, "2026-02-02", "08:00", "08:39", 39, "<b>run</b>", "运动"),
    ]


def test_format_duration_hh_mm_ss() -> None:
    assert format_duration(0) == "00:00:00"
    assert format_duration(3_661_999) == "01:01:01"
    assert format_duration(-1_000) == "00:00:00"


def test_csv_has_bom_header_and_quoted_content() -> None:
    payload = build_csv(sample_records())

    assert payload.startswith(b"\xef\xbb\xbf")
    lines = payload.decode("utf-8-sig").splitlines()
    assert lines[0] == "ID,Date,StartTime,EndTime,DurationMinutes,Type,Content"
    assert lines[1] == '101,2026-02-01,09:52,11:53,121,工作,"Wrote ""plan"", reviewed"'
    assert lines[2] == "102,2026-02-01,12:00,12:40,40,生活,lunch"


def test_export_with_no_records_fails() -> None:
    with pytest.raises(ValidationError):
        build_csv([])
    with pytest.raises(ValidationError):
        build_html_report([], datetime(2026, 2, 2, 9, 0))


def test_totals_by_date_and_type() -> None:
    records = sample_records()

    assert totals_by_date(records) == [TotalRow("2026-02-01", 161), TotalRow("2026-02-02", 39)]
    assert totals_by_type(records) == [TotalRow("工作", 121), TotalRow("生活", 40), TotalRow("运动", 39)]


def test_html_report_aggregates_and_escapes() -> None:
    content = build_html_report(sample_records(), datetime(2026, 2, 2, 9, 0))

    assert "Generated 2026-02-02 09:00" in content
    assert "<strong>200</strong> minutes" in content
    assert "<strong>2</strong> days" in content
    assert "<tr><td>2026-02-01</td><td>161</td><td>2.7</td></tr>" in content
    assert "<tr><td>工作</td><td>121</td><td>60.5%</td></tr>" in content
    assert "&lt;b&gt;run&lt;/b&gt;" in content
    assert "<b>run</b>" not in content
