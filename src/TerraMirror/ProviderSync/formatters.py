"""Formatting helpers for turning sync plans, reports, and indexes into tables.

The CLI prints compact ASCII tables for the ``plan``, ``sync`` and ``show``
commands.  Header tuples and row builders live here so the presentation stays
consistent across commands.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from .catalog import LocalProviderIndex, LocalVersionIndex
from .coordinator import SyncReport
from .sync import ProviderPlan

PLAN_TABLE_HEADERS: Tuple[str, ...] = ("provider", "source", "version", "platform", "filename")
REPORT_TABLE_HEADERS: Tuple[str, ...] = ("source", "version", "downloaded", "skipped")
INDEX_TABLE_HEADERS: Tuple[str, ...] = ("platform", "hashes", "file")

__all__ = [
    "PLAN_TABLE_HEADERS",
    "REPORT_TABLE_HEADERS",
    "INDEX_TABLE_HEADERS",
    "format_table",
    "format_plan_rows",
    "format_report_rows",
    "format_version_index_rows",
    "format_provider_index_rows",
]


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render a padded ASCII table."""

    column_widths = [len(header) for header in headers]
    for row in rows:
        for index, cell in enumerate(row):
            column_widths[index] = max(column_widths[index], len(cell))

    def _format_row(values: Sequence[str]) -> str:
        return " | ".join(value.ljust(column_widths[index]) for index, value in enumerate(values))

    separator = "-+-".join("-" * width for width in column_widths)
    lines = [_format_row(headers), separator]
    lines.extend(_format_row(row) for row in rows)
    return "\n".join(lines)


def format_plan_rows(plans: Iterable[ProviderPlan]) -> List[Tuple[str, str, str, str, str]]:
    """One row per (version, platform) a sync would mirror."""

    rows: List[Tuple[str, str, str, str, str]] = []
    for plan in plans:
        for planned in plan.versions:
            if not planned.artifacts:
                rows.append((plan.name, plan.source, planned.version, "-", "-"))
            for artifact in planned.artifacts:
                rows.append(
                    (plan.name, plan.source, planned.version, artifact.platform.key, artifact.filename)
                )
    return rows


def format_report_rows(reports: Iterable[SyncReport]) -> List[Tuple[str, str, str, str]]:
    return [
        (
            report.provider_source,
            report.version,
            ", ".join(report.downloaded) or "-",
            ", ".join(report.skipped) or "-",
        )
        for report in reports
    ]


def _shorten(digest: str, width: int = 20) -> str:
    return f"{digest[:width]}…" if len(digest) > width else digest


def format_version_index_rows(index: LocalVersionIndex) -> List[Tuple[str, str, str]]:
    rows: List[Tuple[str, str, str]] = []
    for key in index.platform_keys():
        record = index.get(key)
        if record is None:
            continue
        hashes = ", ".join(_shorten(digest) for digest in sorted(record.hashes))
        rows.append((key, hashes, record.url))
    return rows


def format_provider_index_rows(index: LocalProviderIndex) -> List[Tuple[str]]:
    return [(version,) for version in index.versions()]
