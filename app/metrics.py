"""Running-total carry forward and dashboard metrics.

All functions here are pure: they take the record snapshot (normalised
dictionaries, see :mod:`app.records`) and return plain values.  They are
recomputed from the full snapshot on every request.
"""

from __future__ import annotations

import calendar
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Mapping

from app.constants import ALL_PARTS, PART_NAMES
from app.records import get_path, parse_record_date, record_sort_key


@dataclass(frozen=True)
class CumulativeSeed:
    """Cumulative RFD and dispatch totals inherited by a new entry."""

    cumulative_rfd: int = 0
    cumulative_dispatch: int = 0


@dataclass(frozen=True)
class AskingRate:
    """Daily RFD units still required to hit the monthly target."""

    rate: int
    is_target_met: bool
    needed: int
    days: int
    surplus: int = 0


@dataclass(frozen=True)
class DashboardSummary:
    part: str
    target: int
    total_inspected: int
    total_ok_visual: int
    total_not_ok_visual: int
    pending_other_visual: int
    total_cumulative_dispatched: int
    overall_progress: float
    remaining_dispatch_qty: int
    remaining_days: int
    asking_rate: AskingRate
    dispatch_by_part: list[dict] = field(default_factory=list)


def _records_for_part(records: Iterable[dict], part_name: str) -> list[dict]:
    return [record for record in records if record.get("part_name") == part_name]


def cumulative_before(
    records: Iterable[dict],
    part_name: str,
    entry_date: date | str,
    shift: str,
) -> CumulativeSeed:
    """Return the running totals recorded just before ``(entry_date, shift)``.

    The part's records are ordered by ``(date, shift)`` and scanned from the
    newest backwards.  A record on an earlier calendar date always qualifies;
    a record on the same date qualifies only when its shift letter sorts
    before ``shift``.  When nothing qualifies both seeds are zero.
    """

    target_date = parse_record_date(entry_date)
    if target_date is None:
        return CumulativeSeed()

    ordered = sorted(_records_for_part(records, part_name), key=record_sort_key)
    for record in reversed(ordered):
        record_date = parse_record_date(record.get("date"))
        if record_date is None:
            continue
        if record_date < target_date or (
            record_date == target_date and (record.get("shift") or "") < shift
        ):
            return CumulativeSeed(
                cumulative_rfd=int(get_path(record, ("dispatch", "rfd", "cumulative")) or 0),
                cumulative_dispatch=int(
                    get_path(record, ("dispatch", "dispatch", "cumulative")) or 0
                ),
            )
    return CumulativeSeed()


def carry_forward(
    records: Iterable[dict],
    part_name: str,
    entry_date: date | str,
    shift: str,
    rfd_today: int = 0,
    dispatch_today: int = 0,
) -> CumulativeSeed:
    """Return the new running totals for an entry with today's deltas applied."""

    seed = cumulative_before(records, part_name, entry_date, shift)
    return CumulativeSeed(
        cumulative_rfd=seed.cumulative_rfd + (rfd_today or 0),
        cumulative_dispatch=seed.cumulative_dispatch + (dispatch_today or 0),
    )


def latest_record(
    records: Iterable[dict],
    part_name: str,
    on_or_before: date | str | None = None,
) -> dict | None:
    """Return the part's most recent record, the later shift winning ties."""

    limit = parse_record_date(on_or_before) if on_or_before is not None else None
    candidates = []
    for record in _records_for_part(records, part_name):
        record_date = parse_record_date(record.get("date"))
        if record_date is None:
            continue
        if limit is not None and record_date > limit:
            continue
        candidates.append(record)
    if not candidates:
        return None
    return max(candidates, key=record_sort_key)


def remaining_days_in_month(for_date: date) -> int:
    """Calendar days left in ``for_date``'s month, counting ``for_date`` itself."""

    last_day = calendar.monthrange(for_date.year, for_date.month)[1]
    return max(1, last_day - for_date.day + 1)


def parts_for(part: str | None) -> list[str]:
    if not part or part == ALL_PARTS:
        return list(PART_NAMES)
    return [part]


def target_for(targets: Mapping[str, int], part: str | None) -> int:
    return sum(int(targets.get(name) or 0) for name in parts_for(part))


def daily_asking_rate(
    records: Iterable[dict],
    targets: Mapping[str, int],
    parts: Iterable[str],
    reference_date: date,
) -> AskingRate:
    """Return the daily RFD rate required to reach the monthly target.

    Each part contributes its own target and its own cumulative RFD as of the
    day before ``reference_date``; the sums are combined only afterwards.
    """

    records = list(records)
    days = remaining_days_in_month(reference_date)
    yesterday = reference_date - timedelta(days=1)

    total_target = 0
    total_rfd = 0
    for part_name in parts:
        total_target += int(targets.get(part_name) or 0)
        record = latest_record(records, part_name, on_or_before=yesterday)
        if record is not None:
            total_rfd += int(get_path(record, ("dispatch", "rfd", "cumulative")) or 0)

    needed = total_target - total_rfd
    if needed <= 0:
        return AskingRate(rate=0, is_target_met=True, needed=needed, days=days, surplus=-needed)
    return AskingRate(
        rate=math.ceil(needed / days),
        is_target_met=False,
        needed=needed,
        days=days,
    )


def overall_progress(total_ok: int, target: int) -> float:
    if target > 0:
        return min(total_ok / target * 100, 100.0)
    return 0.0


def cumulative_dispatched(records: Iterable[dict], part_name: str) -> int:
    record = latest_record(records, part_name)
    if record is None:
        return 0
    return int(get_path(record, ("dispatch", "dispatch", "cumulative")) or 0)


def _within(record: dict, start: date | None, end: date | None) -> bool:
    record_date = parse_record_date(record.get("date"))
    if start and (record_date is None or record_date < start):
        return False
    if end and (record_date is None or record_date > end):
        return False
    return True


def summarize(
    records: Iterable[dict],
    targets: Mapping[str, int],
    part: str,
    reference_date: date,
    *,
    start: date | None = None,
    end: date | None = None,
) -> DashboardSummary:
    """Compute the dashboard figures for ``part`` (or ``"All"``).

    Args:
        records: Normalised inspection records.
        targets: Monthly OK-parts target per part name.
        part: A part name or ``"All"``.
        reference_date: Day the asking rate and remaining days refer to.
        start: Optional first day for the summed visual counters.
        end: Optional last day for the summed visual counters.
    """

    records = list(records)
    selected_parts = parts_for(part)
    selected = [
        record
        for record in records
        if record.get("part_name") in selected_parts and _within(record, start, end)
    ]

    total_inspected = sum(get_path(r, ("final_inspection", "visual", "visual_done")) for r in selected)
    total_ok = sum(get_path(r, ("final_inspection", "visual", "ok")) for r in selected)
    total_not_ok = sum(get_path(r, ("final_inspection", "visual", "not_ok")) for r in selected)

    dispatch_by_part = [
        {"name": name, "dispatched": cumulative_dispatched(records, name)}
        for name in PART_NAMES
    ]
    dispatched = sum(
        item["dispatched"] for item in dispatch_by_part if item["name"] in selected_parts
    )

    target = target_for(targets, part)
    return DashboardSummary(
        part=part or ALL_PARTS,
        target=target,
        total_inspected=total_inspected,
        total_ok_visual=total_ok,
        total_not_ok_visual=total_not_ok,
        pending_other_visual=max(0, total_inspected - total_ok - total_not_ok),
        total_cumulative_dispatched=dispatched,
        overall_progress=overall_progress(total_ok, target),
        remaining_dispatch_qty=dispatched - total_ok,
        remaining_days=remaining_days_in_month(reference_date),
        asking_rate=daily_asking_rate(records, targets, selected_parts, reference_date),
        dispatch_by_part=dispatch_by_part,
    )
