"""Report builders: pending snapshots, the part report and the share text."""

from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Iterable, Mapping

from app.constants import APP_NAME, PART_NAMES, SHIFT_OPTIONS
from app.metrics import daily_asking_rate, latest_record
from app.records import find_record, get_path, parse_record_date

PENDING_FIELDS = {
    "material": {
        "washing_pending": ("material_inspection", "washing_pending"),
        "multigauge_pending": ("material_inspection", "multigauge_pending"),
    },
    "final": {
        "visual_pending": ("final_inspection", "visual", "pending"),
    },
    "tpi": {
        "tpi_pending": ("tpi_inspection", "pending"),
    },
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def pending_snapshot(records: Iterable[dict], stage: str, today: date) -> list[dict]:
    """Return today's pending counters of ``stage`` for every part.

    The latest shift recorded today wins.  Parts without a record for today
    report zeros.
    """

    fields = PENDING_FIELDS[stage]
    records = list(records)
    rows = []
    for part_name in PART_NAMES:
        todays = [
            record
            for record in records
            if record.get("part_name") == part_name
            and parse_record_date(record.get("date")) == today
        ]
        latest = max(todays, key=lambda r: r.get("shift") or "") if todays else None
        row = {"part_name": part_name}
        for name, path in fields.items():
            row[name] = int(get_path(latest, path)) if latest else 0
        rows.append(row)
    return rows


def process_step_not_ok(record: dict) -> int:
    return int(get_path(record, ("final_inspection", "multigauge", "not_ok"))) + int(
        get_path(record, ("final_inspection", "visual", "not_ok"))
    )


def visual_rejection_ppm(record: dict) -> int:
    done = int(get_path(record, ("final_inspection", "visual", "visual_done")))
    if done <= 0:
        return 0
    not_ok = int(get_path(record, ("final_inspection", "visual", "not_ok")))
    return _round_half_up(not_ok / done * 1_000_000)


def part_report(records: Iterable[dict], part_name: str, today: date) -> dict:
    """Build the part report for the day before ``today``.

    Shift A is shown when it exists, otherwise shift B.  The cumulative
    process-step rejection total covers every record of the part up to the
    report date.
    """

    records = list(records)
    report_date = today - timedelta(days=1)
    record = None
    for shift in SHIFT_OPTIONS:
        record = find_record(records, report_date, part_name, shift)
        if record is not None:
            break

    cumulative = sum(
        process_step_not_ok(r)
        for r in records
        if r.get("part_name") == part_name
        and (parse_record_date(r.get("date")) or date.max) <= report_date
    )

    return {
        "part_name": part_name,
        "report_date": report_date.isoformat(),
        "record": record,
        "daily_process_step_not_ok": process_step_not_ok(record) if record else 0,
        "daily_tpi_rework": int(get_path(record, ("tpi_inspection", "not_ok"))) if record else 0,
        "visual_rejection_ppm": visual_rejection_ppm(record) if record else 0,
        "cumulative_process_step_rejection": cumulative,
    }


def _group_rejections(entries: Iterable[dict]) -> dict[str, int]:
    grouped: dict[str, int] = {}
    for entry in entries:
        defect = entry.get("defect_type") or ""
        grouped[defect] = grouped.get(defect, 0) + int(entry.get("quantity") or 0)
    return grouped


def _day_totals(records: list[dict], shift_filter: str) -> dict:
    if shift_filter != "DayTotal":
        records = [r for r in records if r.get("shift") == shift_filter][:1]

    totals = {
        "multigauge_total": 0,
        "multigauge_ok": 0,
        "multigauge_not_ok": 0,
        "visual_done": 0,
        "visual_ok": 0,
        "visual_not_ok": 0,
        "tpi_done": 0,
        "tpi_ok": 0,
        "tpi_not_ok": 0,
        "rfd_today": 0,
        "dispatch_today": 0,
    }
    paths = {
        "multigauge_total": ("final_inspection", "multigauge", "total"),
        "multigauge_ok": ("final_inspection", "multigauge", "ok"),
        "multigauge_not_ok": ("final_inspection", "multigauge", "not_ok"),
        "visual_done": ("final_inspection", "visual", "visual_done"),
        "visual_ok": ("final_inspection", "visual", "ok"),
        "visual_not_ok": ("final_inspection", "visual", "not_ok"),
        "tpi_done": ("tpi_inspection", "done"),
        "tpi_ok": ("tpi_inspection", "ok"),
        "tpi_not_ok": ("tpi_inspection", "not_ok"),
        "rfd_today": ("dispatch", "rfd", "today"),
        "dispatch_today": ("dispatch", "dispatch", "today"),
    }
    rejections: list[dict] = []
    tpi_rejections: list[dict] = []
    for record in records:
        for key, path in paths.items():
            totals[key] += int(get_path(record, path))
        rejections.extend(record.get("rejections") or [])
        tpi_rejections.extend(record.get("tpi_rejections") or [])
    totals["rejections"] = _group_rejections(rejections)
    totals["tpi_rejections"] = _group_rejections(tpi_rejections)
    return totals


def _long_date(value: date) -> str:
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def build_progress_report(
    records: Iterable[dict],
    targets: Mapping[str, int],
    report_date: date,
    shift_filter: str = "DayTotal",
) -> tuple[str, list[dict]]:
    """Return the shareable text report and the per-part progress payload.

    Args:
        records: Normalised inspection records.
        targets: Monthly OK-parts target per part name.
        report_date: Day being reported.
        shift_filter: ``"DayTotal"`` for both shifts summed, or a shift letter.

    Returns:
        tuple: ``(text, parts_progress)`` where ``parts_progress`` lists the
        name, target, cumulative visual done and cumulative visual OK of each
        part up to ``report_date``.
    """

    records = list(records)
    long_date = _long_date(report_date)
    short_date = report_date.strftime("%d/%m")

    lines = [f"{APP_NAME} Inspection Report - {long_date}", "=" * 36, ""]
    parts_progress: list[dict] = []

    for part_name in PART_NAMES:
        target = int(targets.get(part_name) or 0)
        latest = latest_record(records, part_name, on_or_before=report_date)

        lines.append(part_name.upper())
        lines.append("-" * 20)
        lines.append(f"Target (Month OK Parts): {target}")
        lines.append(
            f"Cumulative RFD (as of {short_date}): "
            f"{int(get_path(latest, ('dispatch', 'rfd', 'cumulative'))) if latest else 0}"
        )
        lines.append(
            f"Cumulative Dispatch (as of {short_date}): "
            f"{int(get_path(latest, ('dispatch', 'dispatch', 'cumulative'))) if latest else 0}"
        )

        if target <= 0:
            lines.append("Daily Asking Rate (RFD): No target set")
        else:
            rate = daily_asking_rate(records, targets, [part_name], report_date)
            if rate.is_target_met:
                line = "Daily Asking Rate (RFD): Target Met!"
                if rate.surplus > 0:
                    line += f" (Surplus {rate.surplus})"
                lines.append(line)
            else:
                lines.append(
                    f"Daily Asking Rate (RFD): {rate.rate} units/day "
                    f"(Need {rate.needed} more in {rate.days} days)"
                )
        lines.append("")

        label = "Daily Summary" if shift_filter == "DayTotal" else f"Shift {shift_filter} Summary"
        lines.append(f"{label} (for {long_date}):")
        day_records = sorted(
            (
                r
                for r in records
                if r.get("part_name") == part_name
                and parse_record_date(r.get("date")) == report_date
            ),
            key=lambda r: r.get("shift") or "",
        )
        day = _day_totals(day_records, shift_filter)

        lines.extend(
            [
                "  Multigauge Insp:",
                f"    Total Inspected: {day['multigauge_total']}",
                f"    OK: {day['multigauge_ok']}",
                f"    Not OK: {day['multigauge_not_ok']}",
                "  Visual Insp:",
                f"    Visual Done: {day['visual_done']}",
                f"    OK: {day['visual_ok']}",
                f"    Not OK: {day['visual_not_ok']}",
            ]
        )
        if day["rejections"]:
            lines.append("    Rejections (Final Visual Insp.):")
            lines.extend(f"      - {name}: {qty}" for name, qty in day["rejections"].items())
        lines.extend(
            [
                "  TPI Insp:",
                f"    Done: {day['tpi_done']}",
                f"    OK: {day['tpi_ok']}",
                f"    Not OK: {day['tpi_not_ok']}",
            ]
        )
        if day["tpi_rejections"]:
            lines.append("    Rejections (TPI):")
            lines.extend(f"      - {name}: {qty}" for name, qty in day["tpi_rejections"].items())
        lines.extend(
            [
                "  Dispatch (Today):",
                f"    RFD: {day['rfd_today']}",
                f"    Dispatched: {day['dispatch_today']}",
                "",
            ]
        )

        def pending(path: tuple[str, ...]) -> int:
            return int(get_path(latest, path)) if latest else 0

        lines.extend(
            [
                f"Inspection Pending (as of end of {long_date}):",
                f"  Washing Pending: {pending(('material_inspection', 'washing_pending'))}",
                "  Multigauge Pending (Mat.Insp): "
                f"{pending(('material_inspection', 'multigauge_pending'))}",
                "  Visual Pending (Final Insp.): "
                f"{pending(('final_inspection', 'visual', 'pending'))}",
                f"  TPI Pending: {pending(('tpi_inspection', 'pending'))}",
                "",
                "",
            ]
        )

        history = [
            r
            for r in records
            if r.get("part_name") == part_name
            and (parse_record_date(r.get("date")) or date.max) <= report_date
        ]
        parts_progress.append(
            {
                "name": part_name,
                "target": target,
                "inspected": sum(
                    int(get_path(r, ("final_inspection", "visual", "visual_done"))) for r in history
                ),
                "ok": sum(int(get_path(r, ("final_inspection", "visual", "ok"))) for r in history),
            }
        )

    lines.append("Please see attached image for a visual summary of progress against targets.")
    return "\n".join(lines), parts_progress
