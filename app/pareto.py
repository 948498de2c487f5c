"""Rejection Pareto tallies for the dashboard and the TPI report."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator

from app.constants import ALL_PARTS, PART_NAMES
from app.metrics import parts_for
from app.records import parse_record_date


@dataclass(frozen=True)
class ParetoPoint:
    name: str
    rejection_count: int
    percentage: float
    cumulative_percentage: float


def window_bounds(window: str, today: date) -> tuple[date | None, date | None]:
    """Return the inclusive date bounds for a named Pareto window."""

    if window == "last_7_days":
        return today - timedelta(days=6), today
    if window == "current_month":
        return today.replace(day=1), today
    return None, None


def _in_range(records: Iterable[dict], start: date | None, end: date | None) -> Iterator[dict]:
    for record in records:
        record_date = parse_record_date(record.get("date"))
        if start and (record_date is None or record_date < start):
            continue
        if end and (record_date is None or record_date > end):
            continue
        yield record


def pareto(groups: dict[str, int]) -> list[ParetoPoint]:
    """Rank ``groups`` by quantity and attach the cumulative percentage curve.

    Groups with no rejections are dropped.  Ties keep the insertion order of
    ``groups`` because the sort is stable.  The running percentage is
    clamped to 100 to absorb floating point drift.
    """

    total = sum(groups.values())
    if total <= 0:
        return []

    ranked = sorted(
        ((name, qty) for name, qty in groups.items() if qty > 0),
        key=lambda item: item[1],
        reverse=True,
    )

    points: list[ParetoPoint] = []
    cumulative = 0.0
    for name, qty in ranked:
        share = qty / total * 100
        cumulative += share
        points.append(
            ParetoPoint(
                name=name,
                rejection_count=qty,
                percentage=share,
                cumulative_percentage=min(cumulative, 100.0),
            )
        )
    return points


def defect_pareto(
    records: Iterable[dict],
    window: str = "all_time",
    today: date | None = None,
    *,
    include_tpi: bool = False,
) -> list[ParetoPoint]:
    """Pareto of final-inspection rejections grouped by defect type."""

    today = today or date.today()
    start, end = window_bounds(window, today)
    lists = ("rejections", "tpi_rejections") if include_tpi else ("rejections",)

    groups: dict[str, int] = {}
    for record in _in_range(records, start, end):
        for list_key in lists:
            for entry in record.get(list_key) or []:
                defect = entry.get("defect_type")
                if not defect:
                    continue
                groups[defect] = groups.get(defect, 0) + int(entry.get("quantity") or 0)
    return pareto(groups)


def _tpi_rejected(record: dict) -> int:
    return sum(int(entry.get("quantity") or 0) for entry in record.get("tpi_rejections") or [])


def tpi_part_pareto(
    records: Iterable[dict],
    start: date | None,
    end: date | None,
    part: str = ALL_PARTS,
) -> list[ParetoPoint]:
    """Pareto of TPI rejection quantity grouped by part name."""

    selected = parts_for(part)
    groups = {name: 0 for name in PART_NAMES if name in selected}
    for record in _in_range(records, start, end):
        name = record.get("part_name")
        if name in groups:
            groups[name] += _tpi_rejected(record)
    return pareto(groups)


def tpi_aggregate(
    records: Iterable[dict],
    start: date | None,
    end: date | None,
    part: str = ALL_PARTS,
) -> dict[str, int]:
    """Return TPI done, OK and rejected totals for the selected range."""

    selected = parts_for(part)
    totals = {"total_done": 0, "total_ok": 0, "total_rejected": 0}
    for record in _in_range(records, start, end):
        if record.get("part_name") not in selected:
            continue
        tpi = record.get("tpi_inspection") or {}
        totals["total_done"] += int(tpi.get("done") or 0)
        totals["total_ok"] += int(tpi.get("ok") or 0)
        totals["total_rejected"] += _tpi_rejected(record)
    return totals
